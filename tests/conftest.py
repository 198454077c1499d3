"""Pytest fixtures and lightweight stand-ins for tokenizers and models."""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, Iterable, List, Optional, Sequence

import pytest
import torch

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

SPECIAL_TOKENS = ("[PAD]", "[CLS]", "[SEP]", "</s>", "[MASK]")
CLS_ID, SEP_ID = 1, 2
WORDS = ("hello", "world", "a", "b", "c", "paris", "is", "nice", "where", "the")


class WordTokenizer:
    """Whitespace tokenizer with BERT-style specials and a fixed vocabulary.

    ``[PAD]=0 [CLS]=1 [SEP]=2 </s>=3 [MASK]=4``; words follow from id 5.
    """

    pad_token_id = 0
    cls_token_id = 1
    sep_token_id = 2
    eos_token_id = 3
    mask_token_id = 4
    mask_token = "[MASK]"
    sep_token = "[SEP]"

    def __init__(self, words: Sequence[str] = WORDS) -> None:
        self.vocab: List[str] = list(SPECIAL_TOKENS) + list(words)
        self.ids: Dict[str, int] = {token: index for index, token in enumerate(self.vocab)}
        self.padding_side = "right"
        self.calls: List[dict] = []

    @property
    def all_special_ids(self) -> List[int]:
        return list(range(len(SPECIAL_TOKENS)))

    def encode(self, text: str) -> List[int]:
        return [self.ids[word] for word in text.split()]

    def __call__(
        self,
        text,
        text_pair=None,
        *,
        padding=True,
        truncation=True,
        return_tensors="pt",
        add_special_tokens=True,
        **kwargs,
    ):
        self.calls.append({"padding_side": self.padding_side, "add_special_tokens": add_special_tokens, **kwargs})
        texts = [text] if isinstance(text, str) else list(text)
        pairs = [None] * len(texts) if text_pair is None else list(text_pair)
        rows = []
        for first, second in zip(texts, pairs):
            ids = self.encode(first)
            if add_special_tokens:
                ids = [CLS_ID] + ids + [SEP_ID]
            if second is not None:
                ids = ids + self.encode(second) + ([SEP_ID] if add_special_tokens else [])
            rows.append(ids)
        width = max(len(ids) for ids in rows)
        input_ids, attention_mask = [], []
        for ids in rows:
            pad = [self.pad_token_id] * (width - len(ids))
            mask = [1] * len(ids)
            if self.padding_side == "left":
                input_ids.append(pad + ids)
                attention_mask.append([0] * len(pad) + mask)
            else:
                input_ids.append(ids + pad)
                attention_mask.append(mask + [0] * len(pad))
        return {
            "input_ids": torch.tensor(input_ids, dtype=torch.long),
            "attention_mask": torch.tensor(attention_mask, dtype=torch.long),
        }

    def decode(self, ids: Iterable[int], skip_special_tokens: bool = False, **kwargs) -> str:
        del kwargs
        tokens = []
        for token in ids:
            token = int(token)
            if skip_special_tokens and token in self.all_special_ids:
                continue
            tokens.append(self.vocab[token])
        return " ".join(tokens)

    def batch_decode(self, sequences, skip_special_tokens: bool = False, **kwargs) -> List[str]:
        return [self.decode(ids, skip_special_tokens=skip_special_tokens, **kwargs) for ids in sequences]

    def apply_chat_template(self, chat, tokenize: bool = False, add_generation_prompt: bool = True) -> str:
        del tokenize, add_generation_prompt
        return " ".join(message["content"] for message in chat)


class CountingLM(torch.nn.Module):
    """Causal LM that always predicts ``last_token + 1``, then ``</s>`` past the vocabulary."""

    def __init__(self, vocab_size: int = len(SPECIAL_TOKENS) + len(WORDS)) -> None:
        super().__init__()
        self.vocab_size = vocab_size
        self.register_buffer("_stub", torch.zeros(1))
        self.calls = 0

    def forward(self, input_ids, attention_mask=None, past_key_values=None, **kwargs):  # type: ignore[override]
        del attention_mask, past_key_values, kwargs
        self.calls += 1
        last = input_ids[:, -1]
        following = last + 1
        following = torch.where(
            following >= self.vocab_size, torch.full_like(following, WordTokenizer.eos_token_id), following
        )
        logits = torch.full((input_ids.size(0), input_ids.size(1), self.vocab_size), -10.0)
        logits[torch.arange(input_ids.size(0)), -1, following] = 10.0
        return SimpleNamespace(logits=logits)


@pytest.fixture()
def tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture()
def counting_lm() -> CountingLM:
    return CountingLM()


def label_config(*labels: str, **extra) -> SimpleNamespace:
    return SimpleNamespace(id2label={index: label for index, label in enumerate(labels)}, **extra)


def fixed_output_model(config: Optional[SimpleNamespace] = None, **outputs: torch.Tensor):
    """Callable returning the same named outputs on every invocation."""

    class _Model:
        def __init__(self) -> None:
            self.config = config
            self.received: List[dict] = []

        def __call__(self, **inputs):
            self.received.append(inputs)
            return dict(outputs)

    return _Model()
