"""Token embeddings with optional pooling, normalisation, and binary quantisation."""

from __future__ import annotations

from typing import Any

import torch

from ..errors import ConfigurationError
from ..interfaces import first_output
from ..postprocess import (
    POOLING_MODES,
    QUANTIZE_PRECISIONS,
    l2_normalize,
    pool_hidden_states,
    quantize_embeddings,
)
from .base import Pipeline


class FeatureExtractionPipeline(Pipeline):
    """Return embeddings as a tensor with a leading batch axis.

    Post-processing always runs in the order pool, normalise, quantise.
    """

    task = "feature-extraction"

    def _call(
        self,
        texts: Any,
        pooling: str = "none",
        normalize: bool = False,
        quantize: bool = False,
        precision: str = "binary",
    ) -> torch.Tensor:
        if pooling not in POOLING_MODES:
            raise ConfigurationError(
                f"Pooling method {pooling!r} not supported; expected one of {POOLING_MODES}."
            )
        if quantize and precision not in QUANTIZE_PRECISIONS:
            raise ConfigurationError(
                f"Precision {precision!r} not supported; expected one of {QUANTIZE_PRECISIONS}."
            )
        batch = self._normalize(texts)
        inputs = self._tokenize(batch.items)
        outputs = self._invoke(inputs)
        result = first_output(outputs, "last_hidden_state", "logits", "token_embeddings")
        result = pool_hidden_states(result.detach().float(), pooling, inputs.get("attention_mask"))
        if normalize:
            result = l2_normalize(result)
        if quantize:
            result = quantize_embeddings(result, precision)
        return result
