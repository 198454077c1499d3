"""Visual document question answering with an image-to-text decoder."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import torch

from ..inference.config import GenerationConfig
from ..inference.generation import GenerationLoop
from ..interfaces import ModelInvocation, Processor, Tokenizer
from ..media import load_image
from .base import Pipeline

logger = logging.getLogger(__name__)

TASK_PROMPT = "<s_docvqa><s_question>{question}</s_question><s_answer>"
ANSWER_PATTERN = re.compile(r"<s_answer>(.*?)</s_answer>", re.DOTALL)


class DocumentQuestionAnsweringPipeline(Pipeline):
    """Answer a question about one document image.

    The question is written into a task prompt that seeds the decoder; the
    answer is whatever the model writes between the answer tags (or up to
    the end of the output when the closing tag never appears).
    """

    task = "document-question-answering"
    batch_ceiling = 1

    def __init__(
        self,
        model: ModelInvocation,
        tokenizer: Optional[Tokenizer] = None,
        processor: Optional[Processor] = None,
        *,
        generation_config: Optional[GenerationConfig] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(model, tokenizer, processor, **kwargs)
        self.generation_config = generation_config or GenerationConfig()

    def _call(self, image: Any, question: str, **generate_kwargs: Any) -> List[Dict[str, str]]:
        batch = self._normalize(image)
        tokenizer = self._require("tokenizer")
        prepared = load_image(batch.items[0], **self._fetch_options())
        pixel_values = self._process(prepared)["pixel_values"]

        prompt = TASK_PROMPT.format(question=question)
        decoder_input_ids = self._tokenize(
            [prompt], add_special_tokens=False, padding=False, truncation=False
        )["input_ids"]

        config = self.generation_config.with_overrides(generate_kwargs)
        loop = GenerationLoop(
            self.model,
            config,
            eos_token_id=getattr(tokenizer, "eos_token_id", None),
            pad_token_id=getattr(tokenizer, "pad_token_id", None),
            input_name="decoder_input_ids",
            attention_mask_name="decoder_attention_mask",
        )
        output_ids = loop.run(
            decoder_input_ids,
            torch.ones_like(decoder_input_ids),
            pixel_values=pixel_values,
        )
        decoded = tokenizer.batch_decode(output_ids)[0]
        return [{"answer": extract_answer(decoded)}]


def extract_answer(decoded: str) -> str:
    match = ANSWER_PATTERN.search(decoded)
    if match is not None:
        return match.group(1).strip()
    _, _, tail = decoded.partition("<s_answer>")
    return re.sub(r"</?s(_[a-z]+)?>", "", tail).strip()
