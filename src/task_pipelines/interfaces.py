"""Structural interfaces for the model, tokenizer, and processor collaborators."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union, runtime_checkable

import torch

NamedTensors = Dict[str, torch.Tensor]


@runtime_checkable
class ModelInvocation(Protocol):
    """Named-tensor inputs in, named-tensor outputs out.

    The only state a model may carry across calls is the decode cache, which
    the caller threads explicitly through ``past_key_values``.
    """

    def __call__(self, **inputs: Any) -> Any: ...


@runtime_checkable
class Tokenizer(Protocol):
    padding_side: str

    def __call__(self, text: Union[str, Sequence[str]], **kwargs: Any) -> Mapping[str, Any]: ...

    def decode(self, token_ids: Sequence[int], **kwargs: Any) -> str: ...

    def batch_decode(self, sequences: Iterable[Sequence[int]], **kwargs: Any) -> List[str]: ...


@runtime_checkable
class Processor(Protocol):
    def __call__(self, items: Any, **kwargs: Any) -> Mapping[str, Any]: ...


def model_device(model: Any) -> torch.device:
    """Best-effort device lookup for modules and plain callables."""

    device = getattr(model, "device", None)
    if isinstance(device, torch.device):
        return device
    parameters = getattr(model, "parameters", None)
    if callable(parameters):
        try:
            return next(parameters()).device
        except StopIteration:
            pass
    return torch.device("cpu")


def model_config(model: Any) -> Any:
    """Return ``model.config`` or an empty namespace-like object."""

    return getattr(model, "config", None) or _EmptyConfig()


class _EmptyConfig:
    def __getattr__(self, name: str) -> Any:
        return None


def as_named_outputs(outputs: Any) -> NamedTensors:
    """Coerce a model return value into a ``dict`` of named outputs."""

    if isinstance(outputs, torch.Tensor):
        return {"logits": outputs}
    if isinstance(outputs, Mapping):
        return {str(key): value for key, value in outputs.items() if value is not None}
    if hasattr(outputs, "_asdict"):
        return {key: value for key, value in outputs._asdict().items() if value is not None}
    if hasattr(outputs, "__dict__"):
        return {
            key: value
            for key, value in vars(outputs).items()
            if not key.startswith("_") and value is not None
        }
    raise TypeError(f"Unsupported model output type: {type(outputs).__name__}")


def to_tensors(inputs: Mapping[str, Any], device: Optional[torch.device] = None) -> NamedTensors:
    """Convert tokenizer/processor outputs to tensors on ``device``."""

    converted: NamedTensors = {}
    for key, value in inputs.items():
        if value is None:
            continue
        tensor = value if isinstance(value, torch.Tensor) else torch.as_tensor(value)
        if device is not None:
            tensor = tensor.to(device)
        converted[str(key)] = tensor
    return converted


def invoke_model(model: Any, inputs: Mapping[str, Any]) -> NamedTensors:
    """Run ``model`` on named inputs without tracking gradients."""

    with torch.inference_mode():
        outputs = model(**inputs)
    return as_named_outputs(outputs)


def first_output(outputs: Mapping[str, Any], *names: str) -> torch.Tensor:
    """Return the first present output among ``names``."""

    for name in names:
        value = outputs.get(name)
        if value is not None:
            return value
    raise KeyError(f"Model returned none of the expected outputs: {', '.join(names)}")


__all__ = [
    "ModelInvocation",
    "NamedTensors",
    "Processor",
    "Tokenizer",
    "as_named_outputs",
    "first_output",
    "invoke_model",
    "model_config",
    "model_device",
    "to_tensors",
]
