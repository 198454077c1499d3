"""Masked-token prediction."""

from __future__ import annotations

from typing import Any, Dict, List

from ..errors import MissingTokenError
from ..postprocess import softmax, top_k as rank_top_k
from .base import Pipeline


class FillMaskPipeline(Pipeline):
    task = "fill-mask"

    def _call(self, texts: Any, top_k: int = 5) -> Any:
        batch = self._normalize(texts)
        tokenizer = self._require("tokenizer")
        inputs = self._tokenize(batch.items)
        logits = self._invoke(inputs)["logits"].detach().cpu()
        mask_token_id = tokenizer.mask_token_id

        results: List[List[Dict[str, Any]]] = []
        for row, ids in enumerate(inputs["input_ids"].tolist()):
            try:
                mask_index = ids.index(mask_token_id)
            except ValueError:
                raise MissingTokenError(
                    str(getattr(tokenizer, "mask_token", mask_token_id)),
                    f"Mask token ({getattr(tokenizer, 'mask_token', mask_token_id)}) not found in text.",
                ) from None
            candidates = []
            for score, token in rank_top_k(softmax(logits[row, mask_index]), top_k):
                sequence = list(ids)
                sequence[mask_index] = token
                candidates.append(
                    {
                        "score": score,
                        "token": token,
                        "token_str": tokenizer.decode([token]),
                        "sequence": tokenizer.decode(sequence, skip_special_tokens=True),
                    }
                )
            results.append(candidates)
        return batch.unwrap(results)
