"""Text classification with softmax (single label) or sigmoid (multi label) scoring."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from ..postprocess import sigmoid, softmax, top_k as rank_top_k
from .base import Pipeline, rows

TextClassificationSingle = Dict[str, Union[str, float]]


class TextClassificationPipeline(Pipeline):
    """Classify one text or a list of texts.

    ``top_k=1`` (the default) flattens each item's ranking to its single best
    label, so the call returns a flat list with one dict per input. Any
    other ``top_k`` (including ``None`` for all labels) returns the ranking
    itself for a single text, or one ranking per text for a list.
    """

    task = "text-classification"

    def _call(self, texts: Any, top_k: Optional[int] = 1) -> Any:
        batch = self._normalize(texts)
        outputs = self._invoke(self._tokenize(batch.items))
        multi_label = getattr(self.config, "problem_type", None) == "multi_label_classification"
        score_fn = sigmoid if multi_label else softmax

        rankings: List[List[TextClassificationSingle]] = []
        for logits in rows(outputs["logits"]):
            ranked = rank_top_k(score_fn(logits), top_k)
            rankings.append([{"label": self._label(index), "score": score} for score, index in ranked])

        if top_k == 1:
            return [ranking[0] for ranking in rankings]
        return batch.unwrap(rankings)
