"""Monocular depth estimation resized back to the input image."""

from __future__ import annotations

from typing import Any, Dict, List

import torch
import torch.nn.functional as F
from PIL import Image

from ..media import prepare_images
from .base import Pipeline


class DepthEstimationPipeline(Pipeline):
    task = "depth-estimation"

    def _call(self, images: Any) -> Any:
        batch = self._normalize(images)
        prepared = prepare_images(batch.items, **self._fetch_options())
        inputs = self._process(prepared)
        predicted = self._invoke({"pixel_values": inputs["pixel_values"]})["predicted_depth"]
        predicted = predicted.detach().cpu().float()

        results: List[Dict[str, Any]] = []
        for index, image in enumerate(prepared):
            depth = predicted[index]
            height, width = depth.shape[-2:]
            prediction = F.interpolate(
                depth.reshape(1, 1, height, width),
                size=(image.height, image.width),
                mode="bilinear",
                align_corners=False,
            ).reshape(image.height, image.width)
            low, high = prediction.min(), prediction.max()
            span = (high - low).clamp_min(1e-12)
            formatted = ((prediction - low) / span * 255.0).to(torch.uint8).numpy()
            results.append({"predicted_depth": prediction, "depth": Image.fromarray(formatted)})
        return batch.unwrap(results)
