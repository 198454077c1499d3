"""Foreground matting: returns the input image with a predicted alpha channel."""

from __future__ import annotations

from typing import Any, List

import numpy as np
import torch
import torch.nn.functional as F
from PIL import Image

from ..interfaces import first_output
from ..media import prepare_images
from .base import Pipeline


class BackgroundRemovalPipeline(Pipeline):
    task = "background-removal"
    batch_ceiling = 1

    def _call(self, images: Any) -> Any:
        batch = self._normalize(images)
        prepared = prepare_images(batch.items, **self._fetch_options())
        inputs = self._process(prepared)
        outputs = self._invoke({"pixel_values": inputs["pixel_values"]})
        masks = first_output(outputs, "alphas", "output", "logits").detach().cpu().float()
        if masks.dim() == 3:
            masks = masks.unsqueeze(1)

        results: List[Image.Image] = []
        for index, image in enumerate(prepared):
            alpha = masks[index : index + 1, :1]
            if alpha.min() < 0.0 or alpha.max() > 1.0:
                alpha = torch.sigmoid(alpha)
            alpha = F.interpolate(alpha, size=(image.height, image.width), mode="bilinear", align_corners=False)
            alpha_bytes = (alpha[0, 0].clamp(0.0, 1.0) * 255.0).round().to(torch.uint8).numpy()
            cutout = image.convert("RGBA")
            cutout.putalpha(Image.fromarray(np.ascontiguousarray(alpha_bytes)))
            results.append(cutout)
        return batch.unwrap(results)
