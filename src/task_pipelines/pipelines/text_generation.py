"""Prompt or chat continuation driven by the shared generation loop."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import torch

from ..inference.config import GenerationConfig
from ..inference.generation import GenerationLoop
from ..interfaces import ModelInvocation, Processor, Tokenizer
from .base import Pipeline

logger = logging.getLogger(__name__)


class TextGenerationPipeline(Pipeline):
    """Continue plain prompts or chats.

    Plain prompts return the full text by default; chats return the
    conversation with the generated assistant turn appended. When only new
    text is wanted, the prompt is cut off by its decoded character length
    rather than by token count, since tokenizers may merge tokens across
    the prompt boundary.
    """

    task = "text-generation"
    allow_chat = True

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

    def _call(
        self,
        texts: Any,
        *,
        add_special_tokens: Optional[bool] = None,
        return_full_text: Optional[bool] = None,
        generator: Optional[torch.Generator] = None,
        **generate_kwargs: Any,
    ) -> Any:
        batch = self._normalize(texts)
        tokenizer = self._require("tokenizer")

        if batch.is_chat:
            prompts = [
                tokenizer.apply_chat_template(chat, tokenize=False, add_generation_prompt=True)
                for chat in batch.items
            ]
            # The chat template already carries the special tokens.
            add_special_tokens = False
            return_full_text = False
        else:
            prompts = list(batch.items)
            if add_special_tokens is None:
                add_special_tokens = bool(
                    getattr(tokenizer, "add_bos_token", False) or getattr(tokenizer, "add_eos_token", False)
                )
            if return_full_text is None:
                return_full_text = True

        config = self.generation_config.with_overrides(generate_kwargs)
        loop = GenerationLoop(
            self.model,
            config,
            eos_token_id=getattr(tokenizer, "eos_token_id", None),
            pad_token_id=getattr(tokenizer, "pad_token_id", None),
            generator=generator,
        )

        previous_side = getattr(tokenizer, "padding_side", "right")
        tokenizer.padding_side = "left"
        try:
            encoded = self._tokenize(prompts, add_special_tokens=add_special_tokens)
        finally:
            tokenizer.padding_side = previous_side

        output_ids = loop.run(encoded["input_ids"], encoded.get("attention_mask"))
        decoded = tokenizer.batch_decode(output_ids, skip_special_tokens=True)

        prompt_lengths: Optional[List[int]] = None
        if not return_full_text and encoded["input_ids"].size(-1) > 0:
            prompt_lengths = [
                len(text)
                for text in tokenizer.batch_decode(encoded["input_ids"], skip_special_tokens=True)
            ]

        grouped: List[List[Dict[str, Any]]] = [[] for _ in batch.items]
        for index, text in enumerate(decoded):
            item = (index * len(batch)) // output_ids.size(0)
            if prompt_lengths is not None:
                text = text[prompt_lengths[item] :]
            if batch.is_chat:
                generated: Any = [*batch.items[item], {"role": "assistant", "content": text}]
            else:
                generated = text
            grouped[item].append({"generated_text": generated})
        logger.debug("text_generated | sequences=%d | inputs=%d", len(decoded), len(batch))
        return batch.unwrap(grouped)
