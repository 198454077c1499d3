"""Semantic segmentation into one binary mask per predicted label."""

from __future__ import annotations

from typing import Any, Dict, List

import numpy as np
import torch
import torch.nn.functional as F
from PIL import Image

from ..errors import ConfigurationError
from ..media import prepare_images
from .base import Pipeline

SUBTASKS = ("semantic",)


class ImageSegmentationPipeline(Pipeline):
    task = "image-segmentation"
    batch_ceiling = 1

    def _call(self, images: Any, subtask: str = "semantic") -> Any:
        if subtask not in SUBTASKS:
            raise ConfigurationError(f"Subtask {subtask!r} not supported; expected one of {SUBTASKS}.")
        batch = self._normalize(images)
        prepared = prepare_images(batch.items, **self._fetch_options())
        inputs = self._process(prepared)
        logits = self._invoke({"pixel_values": inputs["pixel_values"]})["logits"].detach().cpu().float()

        results: List[List[Dict[str, Any]]] = []
        for index, image in enumerate(prepared):
            resized = F.interpolate(
                logits[index : index + 1],
                size=(image.height, image.width),
                mode="bilinear",
                align_corners=False,
            )[0]
            segmentation = resized.argmax(dim=0)
            segments = []
            for label in torch.unique(segmentation).tolist():
                mask = (segmentation == label).numpy().astype(np.uint8) * 255
                segments.append(
                    {"score": None, "label": self._label(int(label)), "mask": Image.fromarray(mask)}
                )
            results.append(segments)
        return batch.unwrap(results)
