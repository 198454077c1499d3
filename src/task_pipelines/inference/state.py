"""Loop state for autoregressive decoding and latent denoising."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Tuple

import torch


PastKeyValueLayer = Tuple[Optional[torch.Tensor], ...]
PastKeyValues = Tuple[PastKeyValueLayer, ...]


@dataclass(slots=True)
class DecodeState:
    """Tracks decode-time tensors for every row of a generation batch.

    Rows that finish stay in place and are padded, so row ``i`` always
    belongs to the same logical input. ``past_key_values`` is whatever the
    model returned last and is handed back to it untouched.
    """

    sequences: torch.Tensor
    attention_mask: torch.Tensor
    past_key_values: Any = None
    step: int = 0
    finished: torch.Tensor = field(init=False)
    prompt_length: int = field(init=False)

    def __post_init__(self) -> None:
        if self.sequences.dim() != 2:
            raise ValueError("DecodeState.sequences must be rank-2 (batch, sequence).")
        if self.attention_mask.dim() != 2:
            raise ValueError("DecodeState.attention_mask must be rank-2 (batch, sequence).")
        if self.sequences.size() != self.attention_mask.size():
            raise ValueError("DecodeState.sequences and attention_mask must have identical shapes.")
        self.finished = torch.zeros(self.sequences.size(0), dtype=torch.bool, device=self.device)
        self.prompt_length = self.sequences.size(1)

    @property
    def device(self) -> torch.device:
        return self.sequences.device

    @property
    def batch_size(self) -> int:
        return self.sequences.size(0)

    @property
    def generated_count(self) -> int:
        return self.sequences.size(1) - self.prompt_length

    @property
    def new_tokens(self) -> torch.Tensor:
        return self.sequences[:, self.prompt_length :]

    @property
    def all_finished(self) -> bool:
        return bool(self.finished.all().item())

    def next_input_ids(self) -> torch.Tensor:
        """Full prompt on the first call, then only the newest token per row."""

        if self.step == 0 or self.past_key_values is None:
            return self.sequences
        return self.sequences[:, -1:]

    def append_tokens(
        self,
        tokens: torch.Tensor,
        *,
        past_key_values: Any,
        eos_token_ids: Sequence[int] = (),
        pad_token_id: Optional[int] = None,
    ) -> torch.Tensor:
        """Append one token per row and update the finished flags.

        Returns the tokens actually written, with finished rows padded.
        """

        tokens = tokens.reshape(-1).to(dtype=self.sequences.dtype, device=self.device)
        if tokens.numel() != self.batch_size:
            raise ValueError(
                f"Expected {self.batch_size} tokens, one per row, received {tokens.numel()}."
            )
        if pad_token_id is not None:
            pad = torch.full_like(tokens, int(pad_token_id))
            tokens = torch.where(self.finished, pad, tokens)
        self.sequences = torch.cat([self.sequences, tokens[:, None]], dim=1)
        ones = torch.ones(
            (self.batch_size, 1), dtype=self.attention_mask.dtype, device=self.attention_mask.device
        )
        self.attention_mask = torch.cat([self.attention_mask, ones], dim=1)
        if eos_token_ids:
            eos = torch.tensor(list(eos_token_ids), dtype=tokens.dtype, device=self.device)
            self.finished = self.finished | torch.isin(tokens, eos)
        self.past_key_values = past_key_values
        self.step += 1
        return tokens

    def reorder(self, row_index: torch.Tensor) -> None:
        """Gather rows (used by beam search when surviving beams change parent)."""

        row_index = row_index.to(self.device)
        self.sequences = self.sequences.index_select(0, row_index)
        self.attention_mask = self.attention_mask.index_select(0, row_index.to(self.attention_mask.device))
        self.finished = self.finished.index_select(0, row_index)
        self.past_key_values = reorder_cache(self.past_key_values, row_index)


@dataclass(slots=True)
class LatentState:
    """Fixed conditioning plus the latent buffer refined by the denoising loop."""

    latents: torch.Tensor
    latent_mask: torch.Tensor
    style: torch.Tensor
    encoder_outputs: torch.Tensor
    attention_mask: torch.Tensor
    num_steps: torch.Tensor
    steps_taken: int = 0

    def __post_init__(self) -> None:
        if self.latents.dim() != 3:
            raise ValueError("LatentState.latents must be shaped [batch, channel, length].")
        if self.latent_mask.dim() != 2:
            raise ValueError("LatentState.latent_mask must be shaped [batch, length].")
        if self.latent_mask.size(0) != self.batch_size or self.latent_mask.size(1) != self.latents.size(2):
            raise ValueError("LatentState.latent_mask must match the latent batch and length.")
        if self.num_steps.dim() != 1 or self.num_steps.size(0) != self.batch_size:
            raise ValueError("LatentState.num_steps must hold one entry per batch element.")

    @property
    def batch_size(self) -> int:
        return self.latents.size(0)

    def timestep(self, step: int) -> torch.Tensor:
        return torch.full(
            (self.batch_size,), float(step), dtype=torch.float32, device=self.latents.device
        )

    def replace_latents(self, latents: torch.Tensor) -> None:
        if latents.shape != self.latents.shape:
            raise ValueError(
                f"Denoiser returned latents of shape {tuple(latents.shape)}, "
                f"expected {tuple(self.latents.shape)}."
            )
        self.latents = latents
        self.steps_taken += 1


def reorder_cache(cache: Any, row_index: torch.Tensor) -> Any:
    """Select cache rows for the new beam order.

    Cache objects exposing ``reorder_cache`` are reordered in place and
    returned as the same object; legacy nested tuples are rebuilt.
    """

    if cache is None:
        return None
    reorder = getattr(cache, "reorder_cache", None)
    if callable(reorder):
        result = reorder(row_index)
        return cache if result is None else result
    if isinstance(cache, torch.Tensor):
        return cache.index_select(0, row_index.to(cache.device))
    if isinstance(cache, (tuple, list)):
        return type(cache)(reorder_cache(entry, row_index) for entry in cache)
    raise TypeError(f"Cannot reorder decode cache of type {type(cache).__name__}.")


__all__ = ["DecodeState", "LatentState", "PastKeyValues", "reorder_cache"]
