"""Object detection with pixel or fractional bounding boxes."""

from __future__ import annotations

from typing import Any, Dict, List

from ..media import prepare_images
from ..postprocess import get_bounding_box, post_process_object_detection
from .base import Pipeline


class ObjectDetectionPipeline(Pipeline):
    """Detect objects in a single image.

    ``percentage=True`` reports box corners as 0..1 fractions of the image,
    otherwise they are integer pixel coordinates.
    """

    task = "object-detection"
    batch_ceiling = 1

    def _call(self, images: Any, threshold: float = 0.9, percentage: bool = False) -> Any:
        batch = self._normalize(images)
        prepared = prepare_images(batch.items, **self._fetch_options())
        image_sizes = None if percentage else [(image.height, image.width) for image in prepared]

        inputs = self._process(prepared)
        model_inputs = {key: inputs[key] for key in ("pixel_values", "pixel_mask") if key in inputs}
        outputs = self._invoke(model_inputs)
        processed = post_process_object_detection(
            outputs["logits"].detach().cpu(),
            outputs["pred_boxes"].detach().cpu(),
            threshold,
            image_sizes,
            use_sigmoid=bool(getattr(self.config, "use_sigmoid", False)),
        )

        results: List[List[Dict[str, Any]]] = []
        for detections in processed:
            results.append(
                [
                    {
                        "score": float(score),
                        "label": self._label(int(label)),
                        "box": get_bounding_box(box.tolist(), not percentage),
                    }
                    for score, label, box in zip(
                        detections["scores"], detections["classes"], detections["boxes"]
                    )
                ]
            )
        return batch.unwrap(results)
