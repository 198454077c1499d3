"""Image-to-image models such as super-resolution."""

from __future__ import annotations

from typing import Any, List

import numpy as np
import torch
from PIL import Image

from ..media import prepare_images
from .base import Pipeline, rows


class ImageToImagePipeline(Pipeline):
    task = "image-to-image"

    def _call(self, images: Any) -> Any:
        batch = self._normalize(images)
        prepared = prepare_images(batch.items, **self._fetch_options())
        inputs = self._process(prepared)
        reconstruction = self._invoke({"pixel_values": inputs["pixel_values"]})["reconstruction"]

        results: List[Image.Image] = []
        for output in rows(reconstruction.float()):
            pixels = (output.squeeze().clamp(0.0, 1.0) * 255.0).round().to(torch.uint8)
            if pixels.dim() == 3:
                pixels = pixels.permute(1, 2, 0)
            results.append(Image.fromarray(np.ascontiguousarray(pixels.numpy())))
        return batch.unwrap(results)
