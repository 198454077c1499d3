"""Score images against free-form candidate labels."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ..media import prepare_images
from ..postprocess import sigmoid, softmax
from .base import Pipeline, rows


class ZeroShotImageClassificationPipeline(Pipeline):
    task = "zero-shot-image-classification"

    def _call(
        self,
        images: Any,
        candidate_labels: Sequence[str],
        hypothesis_template: str = "This is a photo of {}",
    ) -> Any:
        batch = self._normalize(images)
        prepared = prepare_images(batch.items, **self._fetch_options())
        labels = list(candidate_labels)
        texts = [hypothesis_template.replace("{}", label) for label in labels]

        siglip = getattr(self.config, "model_type", None) == "siglip"
        text_inputs = self._tokenize(texts, padding="max_length" if siglip else True)
        image_inputs = self._process(prepared)
        outputs = self._invoke({**text_inputs, "pixel_values": image_inputs["pixel_values"]})
        score_fn = sigmoid if siglip else softmax

        results: List[List[Dict[str, Any]]] = []
        for logits in rows(outputs["logits_per_image"]):
            probs = score_fn(logits).tolist()
            ranked = [{"score": float(score), "label": label} for score, label in zip(probs, labels)]
            ranked.sort(key=lambda entry: entry["score"], reverse=True)
            results.append(ranked)
        return batch.unwrap(results)
