"""Extractive question answering over a question/context pair."""

from __future__ import annotations

from typing import Any, Dict, List

from ..errors import MissingTokenError
from ..inputs import NormalizedBatch, pair_inputs
from ..interfaces import to_tensors
from ..postprocess import score_spans
from .base import Pipeline


class QuestionAnsweringPipeline(Pipeline):
    """Pick answer spans from the context part of each encoded pair.

    Result shape depends on ``top_k`` and batching: ``top_k=1`` yields one
    answer dict per pair, ``top_k>1`` a list of answers per pair. A single
    question/context pair is unwrapped, so only batched calls with
    ``top_k>1`` return a list of lists.
    """

    task = "question-answering"

    def _call(self, question: Any, context: Any, top_k: int = 1) -> Any:
        questions = self._normalize(question)
        contexts = self._normalize(context)
        pairs = pair_inputs(questions, contexts)
        batch = NormalizedBatch(
            items=tuple(pairs), was_batched=questions.was_batched or contexts.was_batched
        )

        tokenizer = self._require("tokenizer")
        encoded = tokenizer(
            [q for q, _ in pairs],
            text_pair=[c for _, c in pairs],
            padding=True,
            truncation=True,
            return_tensors="pt",
        )
        inputs = to_tensors(encoded, self.device)
        outputs = self._invoke(inputs)
        start_logits = outputs["start_logits"].detach().cpu()
        end_logits = outputs["end_logits"].detach().cpu()

        special_ids = set(getattr(tokenizer, "all_special_ids", ()) or ())
        sep_token_id = tokenizer.sep_token_id
        input_ids = inputs["input_ids"].tolist()
        attention_mask = inputs["attention_mask"].tolist()

        answers: List[List[Dict[str, Any]]] = []
        for row, ids in enumerate(input_ids):
            try:
                sep_index = ids.index(sep_token_id)
            except ValueError:
                raise MissingTokenError(str(getattr(tokenizer, "sep_token", sep_token_id))) from None
            valid = [
                attention_mask[row][index] == 1
                and (index == 0 or (index > sep_index and token not in special_ids))
                for index, token in enumerate(ids)
            ]
            spans = score_spans(start_logits[row], end_logits[row], valid, top_k)
            answers.append(
                [
                    {
                        "answer": tokenizer.decode(ids[span.start : span.end + 1], skip_special_tokens=True),
                        "score": span.score,
                    }
                    for span in spans
                ]
            )

        if top_k == 1:
            return batch.unwrap([candidates[0] if candidates else None for candidates in answers])
        return batch.unwrap(answers)
