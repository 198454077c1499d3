"""Image embeddings, either raw hidden states or the pooled projection."""

from __future__ import annotations

from typing import Any

import torch

from ..errors import UnsupportedOutputError
from ..interfaces import first_output
from ..media import prepare_images
from .base import Pipeline


class ImageFeatureExtractionPipeline(Pipeline):
    task = "image-feature-extraction"

    def _call(self, images: Any, pool: bool = False) -> torch.Tensor:
        batch = self._normalize(images)
        prepared = prepare_images(batch.items, **self._fetch_options())
        inputs = self._process(prepared)
        outputs = self._invoke({"pixel_values": inputs["pixel_values"]})
        if pool:
            if "pooler_output" not in outputs:
                raise UnsupportedOutputError(
                    "pooler_output",
                    "The model does not return a pooled output; call with pool=False.",
                )
            return outputs["pooler_output"].detach().float()
        return first_output(outputs, "last_hidden_state", "logits", "image_embeds").detach().float()
