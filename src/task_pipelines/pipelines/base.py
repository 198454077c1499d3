"""Shared plumbing for task pipelines."""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, Iterable, Mapping, Optional, Sequence

import torch

from ..errors import ConfigurationError
from ..hub import FileCache, ProgressCallback
from ..inputs import NormalizedBatch, enforce_batch_ceiling, normalize_inputs
from ..interfaces import (
    ModelInvocation,
    NamedTensors,
    Processor,
    Tokenizer,
    invoke_model,
    model_config,
    model_device,
    to_tensors,
)

logger = logging.getLogger(__name__)


class Pipeline:
    """Composes pre-processing, model invocation, and post-processing for one task.

    Subclasses implement ``_call``; calling the pipeline instance forwards
    to it. Pipelines keep no per-call state on ``self``, so one instance
    may serve concurrent callers when the model does.
    """

    task: ClassVar[str] = ""
    batch_ceiling: ClassVar[Optional[int]] = None
    allow_chat: ClassVar[bool] = False

    def __init__(
        self,
        model: ModelInvocation,
        tokenizer: Optional[Tokenizer] = None,
        processor: Optional[Processor] = None,
        *,
        cache: Optional[FileCache] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.model = model
        self.tokenizer = tokenizer
        self.processor = processor
        self.cache = cache
        self.progress_callback = progress_callback

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._call(*args, **kwargs)

    def _call(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(task={self.task!r}, model={type(self.model).__name__})"

    def dispose(self) -> None:
        """Release resources held by the model, if it exposes a hook for that."""

        for component in (self.model, self.processor):
            release = getattr(component, "dispose", None) or getattr(component, "close", None)
            if callable(release):
                release()

    # --------------------------------------------------------------------- #
    # Helpers
    # --------------------------------------------------------------------- #

    @property
    def config(self) -> Any:
        return model_config(self.model)

    @property
    def device(self) -> torch.device:
        return model_device(self.model)

    def _normalize(self, value: Any) -> NormalizedBatch[Any]:
        batch = normalize_inputs(value, allow_chat=self.allow_chat)
        if self.batch_ceiling is not None:
            enforce_batch_ceiling(batch, self.batch_ceiling, self.task)
        return batch

    def _require(self, component: str) -> Any:
        value = getattr(self, component)
        if value is None:
            raise ConfigurationError(f"The {self.task} pipeline requires a {component}.")
        return value

    def _tokenize(self, texts: Sequence[str], **kwargs: Any) -> NamedTensors:
        tokenizer = self._require("tokenizer")
        options = {"padding": True, "truncation": True, "return_tensors": "pt"}
        options.update(kwargs)
        encoded = tokenizer(list(texts), **options)
        return to_tensors(encoded, self.device)

    def _process(self, items: Any, **kwargs: Any) -> NamedTensors:
        processor = self._require("processor")
        options = {"return_tensors": "pt"}
        options.update(kwargs)
        return to_tensors(processor(items, **options), self.device)

    def _fetch_options(self) -> Dict[str, Any]:
        """Keyword arguments routing remote media through the cache and progress callback."""

        return {"cache": self.cache, "progress_callback": self.progress_callback}

    def _invoke(self, inputs: Mapping[str, Any]) -> NamedTensors:
        return invoke_model(self.model, inputs)

    def _label(self, index: int) -> str:
        id2label = getattr(self.config, "id2label", None)
        if id2label:
            if index in id2label:
                return str(id2label[index])
            if str(index) in id2label:
                return str(id2label[str(index)])
        return f"LABEL_{index}"

    def _processor_sampling_rate(self) -> int:
        processor = self._require("processor")
        for owner in (getattr(processor, "feature_extractor", None), processor):
            rate = getattr(owner, "sampling_rate", None)
            if rate:
                return int(rate)
        rate = getattr(self.config, "sampling_rate", None)
        if rate:
            return int(rate)
        raise ConfigurationError(f"The {self.task} pipeline could not resolve a sampling rate.")


def rows(tensor: torch.Tensor) -> Iterable[torch.Tensor]:
    """Iterate the leading axis of ``tensor`` on the CPU."""

    return iter(tensor.detach().cpu())


__all__ = ["Pipeline", "rows"]
