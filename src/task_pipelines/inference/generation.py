"""Autoregressive decoding loop: greedy, sampling, and beam search."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import torch
import torch.nn.functional as F

from ..errors import ConfigurationError
from ..interfaces import ModelInvocation, invoke_model, model_device
from ..utils.random import make_generator
from .config import GenerationConfig, coerce_generation_config
from .state import DecodeState

LOGGER = logging.getLogger(__name__)


class GenerationLoop:
    """Drives a causal or encoder-decoder model one token at a time.

    The loop moves through INIT (prompt tensors, empty cache), repeated STEP
    calls, and DONE once every row has emitted an end-of-sequence id or the
    ``max_new_tokens`` budget is spent. All state lives in the
    :class:`DecodeState` created by :meth:`run`, so one loop instance may be
    reused across calls.
    """

    def __init__(
        self,
        model: ModelInvocation,
        config: Optional[GenerationConfig] = None,
        *,
        eos_token_id: Optional[Any] = None,
        pad_token_id: Optional[int] = None,
        generator: Optional[torch.Generator] = None,
        input_name: str = "input_ids",
        attention_mask_name: str = "attention_mask",
    ) -> None:
        self.model = model
        self.config = coerce_generation_config(config)
        eos_ids = self.config.eos_token_ids
        if not eos_ids and eos_token_id is not None:
            eos_ids = _as_id_tuple(eos_token_id)
        if not eos_ids:
            budget = self.config.max_new_tokens
            raise ConfigurationError(
                "Generation requires an end-of-sequence token id"
                + ("" if budget is None else f" (max_new_tokens={budget} alone is not accepted)")
                + "; pass eos_token_id in the config or through the tokenizer."
            )
        self.eos_token_ids: Tuple[int, ...] = eos_ids
        if self.config.pad_token_id is not None:
            self.pad_token_id = int(self.config.pad_token_id)
        elif pad_token_id is not None:
            self.pad_token_id = int(pad_token_id)
        else:
            self.pad_token_id = int(eos_ids[0])
        if generator is None and self.config.do_sample:
            generator = make_generator(self.config.seed)
        self.generator = generator
        self.input_name = input_name
        self.attention_mask_name = attention_mask_name

    # --------------------------------------------------------------------- #
    # Public API
    # --------------------------------------------------------------------- #

    def run(
        self,
        input_ids: torch.Tensor,
        attention_mask: Optional[torch.Tensor] = None,
        **model_kwargs: Any,
    ) -> torch.Tensor:
        """Generate continuations and return full sequences.

        The result holds ``batch * num_return_sequences`` rows, grouped by
        input row, each starting with the prompt.
        """

        if input_ids.dim() == 1:
            input_ids = input_ids.unsqueeze(0)
        if attention_mask is None:
            attention_mask = torch.ones_like(input_ids)
        device = model_device(self.model)
        input_ids = input_ids.to(device)
        attention_mask = attention_mask.to(device)
        model_kwargs = {
            key: value.to(device) if isinstance(value, torch.Tensor) else value
            for key, value in model_kwargs.items()
        }
        LOGGER.debug(
            "generation_start | mode=%s | rows=%d | prompt_len=%d | budget=%s",
            self.config.mode,
            input_ids.size(0),
            input_ids.size(1),
            self.config.max_new_tokens,
        )
        if self.config.mode == "beam":
            return self._beam_search(input_ids, attention_mask, model_kwargs)
        return self._sample_or_greedy(input_ids, attention_mask, model_kwargs)

    # --------------------------------------------------------------------- #
    # Loop bodies
    # --------------------------------------------------------------------- #

    def _budget_left(self, state: DecodeState) -> bool:
        budget = self.config.max_new_tokens
        return budget is None or state.generated_count < budget

    def _step(self, state: DecodeState, model_kwargs: Mapping[str, Any]) -> Tuple[torch.Tensor, Any]:
        inputs: Dict[str, Any] = {
            self.input_name: state.next_input_ids(),
            self.attention_mask_name: state.attention_mask,
        }
        inputs.update(model_kwargs)
        if state.past_key_values is not None:
            inputs["past_key_values"] = state.past_key_values
        outputs = invoke_model(self.model, inputs)
        logits = outputs["logits"]
        if logits.dim() == 3:
            logits = logits[:, -1, :]
        return logits.float(), outputs.get("past_key_values")

    def _sample_or_greedy(
        self,
        input_ids: torch.Tensor,
        attention_mask: torch.Tensor,
        model_kwargs: Dict[str, Any],
    ) -> torch.Tensor:
        copies = self.config.num_return_sequences
        if copies > 1:
            batch = input_ids.size(0)
            input_ids = input_ids.repeat_interleave(copies, dim=0)
            attention_mask = attention_mask.repeat_interleave(copies, dim=0)
            model_kwargs = _expand_batch_kwargs(model_kwargs, batch, copies)
        state = DecodeState(sequences=input_ids, attention_mask=attention_mask)
        while not state.all_finished and self._budget_left(state):
            logits, cache = self._step(state, model_kwargs)
            scores = apply_repetition_penalty(logits, state.sequences, self.config.repetition_penalty)
            if self.config.do_sample:
                tokens = sample_tokens(
                    scores,
                    temperature=self.config.temperature,
                    top_k=self.config.top_k,
                    top_p=self.config.top_p,
                    generator=self.generator,
                )
            else:
                tokens = torch.argmax(scores, dim=-1)
            state.append_tokens(
                tokens,
                past_key_values=cache,
                eos_token_ids=self.eos_token_ids,
                pad_token_id=self.pad_token_id,
            )
        LOGGER.debug("generation_done | steps=%d", state.step)
        return state.sequences

    def _beam_search(
        self,
        input_ids: torch.Tensor,
        attention_mask: torch.Tensor,
        model_kwargs: Dict[str, Any],
    ) -> torch.Tensor:
        batch = input_ids.size(0)
        beams = self.config.num_beams
        device = input_ids.device
        state = DecodeState(
            sequences=input_ids.repeat_interleave(beams, dim=0),
            attention_mask=attention_mask.repeat_interleave(beams, dim=0),
        )
        model_kwargs = _expand_batch_kwargs(model_kwargs, batch, beams)

        # Only the first beam is live at the start so the initial top-k does
        # not pick the same token from identical beams.
        beam_scores = torch.zeros((batch, beams), dtype=torch.float32, device=device)
        beam_scores[:, 1:] = float("-inf")
        beam_scores = beam_scores.view(-1)
        hypotheses = [
            BeamHypotheses(
                num_beams=beams,
                length_penalty=self.config.length_penalty,
                early_stopping=self.config.early_stopping,
            )
            for _ in range(batch)
        ]
        done = [False] * batch
        eos = set(self.eos_token_ids)

        while not all(done) and self._budget_left(state):
            logits, cache = self._step(state, model_kwargs)
            scores = apply_repetition_penalty(logits, state.sequences, self.config.repetition_penalty)
            log_probs = F.log_softmax(scores, dim=-1)
            vocab = log_probs.size(-1)
            candidate_scores = (log_probs + beam_scores[:, None]).view(batch, beams * vocab)
            n_candidates = min((1 + len(eos)) * beams, beams * vocab)
            top_scores, top_ids = torch.topk(candidate_scores, n_candidates, dim=1)

            next_scores = torch.full((batch, beams), float("-inf"), device=device)
            next_tokens = torch.full((batch, beams), self.pad_token_id, dtype=torch.long, device=device)
            next_rows = torch.arange(batch * beams, device=device).view(batch, beams).clone()
            generated = state.generated_count + 1

            for b in range(batch):
                if done[b]:
                    next_scores[b] = 0.0
                    continue
                slot = 0
                for rank in range(n_candidates):
                    score = float(top_scores[b, rank].item())
                    flat_id = int(top_ids[b, rank].item())
                    beam_id, token = divmod(flat_id, vocab)
                    row = b * beams + beam_id
                    if token in eos:
                        if rank >= beams:
                            continue
                        finished = torch.cat(
                            [state.sequences[row], torch.tensor([token], dtype=state.sequences.dtype, device=device)]
                        )
                        hypotheses[b].add(finished, score, generated)
                    else:
                        next_scores[b, slot] = score
                        next_tokens[b, slot] = token
                        next_rows[b, slot] = row
                        slot += 1
                    if slot == beams:
                        break
                done[b] = hypotheses[b].is_done(float(top_scores[b].max().item()), generated)

            state.past_key_values = cache
            state.reorder(next_rows.view(-1))
            state.append_tokens(next_tokens.view(-1), past_key_values=state.past_key_values)
            beam_scores = next_scores.view(-1)

        for b in range(batch):
            if done[b]:
                continue
            for k in range(beams):
                row = b * beams + k
                score = float(beam_scores[row].item())
                if score == float("-inf"):
                    continue
                hypotheses[b].add(state.sequences[row].clone(), score, state.generated_count)

        selected: List[torch.Tensor] = []
        for b in range(batch):
            best = hypotheses[b].best(self.config.num_return_sequences)
            if not best:
                best = [state.sequences[b * beams]]
            selected.extend(best)
        LOGGER.debug("beam_search_done | steps=%d", state.step)
        return _pad_stack(selected, self.pad_token_id)


def generate(
    model: ModelInvocation,
    inputs: Mapping[str, torch.Tensor],
    config: Optional[GenerationConfig] = None,
    **kwargs: Any,
) -> torch.Tensor:
    """Convenience wrapper: build a :class:`GenerationLoop` and run it once."""

    payload = dict(inputs)
    input_ids = payload.pop("input_ids")
    attention_mask = payload.pop("attention_mask", None)
    loop = GenerationLoop(model, config, **kwargs)
    return loop.run(input_ids, attention_mask, **payload)


# --------------------------------------------------------------------- #
# Beam bookkeeping
# --------------------------------------------------------------------- #


@dataclass(slots=True)
class BeamHypotheses:
    """Finished beams for one batch element, ranked by length-normalised score."""

    num_beams: int
    length_penalty: float = 1.0
    early_stopping: bool = False
    entries: List[Tuple[float, torch.Tensor]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def normalised(self, sum_logprobs: float, generated_length: int) -> float:
        return sum_logprobs / (max(1, generated_length) ** self.length_penalty)

    @property
    def worst_score(self) -> float:
        if not self.entries:
            return float("inf")
        return self.entries[-1][0]

    def add(self, sequence: torch.Tensor, sum_logprobs: float, generated_length: int) -> None:
        score = self.normalised(sum_logprobs, generated_length)
        if len(self.entries) >= self.num_beams and score <= self.worst_score:
            return
        self.entries.append((score, sequence))
        self.entries.sort(key=lambda entry: entry[0], reverse=True)
        del self.entries[self.num_beams :]

    def is_done(self, best_sum_logprobs: float, generated_length: int) -> bool:
        if len(self.entries) < self.num_beams:
            return False
        if self.early_stopping:
            return True
        return self.normalised(best_sum_logprobs, generated_length) <= self.worst_score

    def best(self, count: int) -> List[torch.Tensor]:
        return [sequence for _, sequence in self.entries[:count]]


# --------------------------------------------------------------------- #
# Logit processors
# --------------------------------------------------------------------- #


def apply_repetition_penalty(
    scores: torch.Tensor,
    history: torch.Tensor,
    penalty: float,
) -> torch.Tensor:
    """Shrink the logits of tokens already present in each row's history."""

    if penalty == 1.0 or history.numel() == 0:
        return scores
    history = history.to(scores.device).long()
    gathered = torch.gather(scores, 1, history)
    gathered = torch.where(gathered < 0, gathered * penalty, gathered / penalty)
    return scores.scatter(1, history, gathered)


def apply_top_k_top_p(scores: torch.Tensor, top_k: int, top_p: float) -> torch.Tensor:
    filtered = scores
    vocab = scores.size(-1)
    if top_k > 0 and top_k < vocab:
        kth_values = torch.topk(filtered, top_k, dim=-1).values[..., -1, None]
        mask = filtered < kth_values
        filtered = filtered.masked_fill(mask, float("-inf"))
    if 0.0 < top_p < 1.0:
        sorted_logits, sorted_indices = torch.sort(filtered, descending=True, dim=-1)
        cumulative = torch.cumsum(F.softmax(sorted_logits, dim=-1), dim=-1)
        # Shift right so the token that crosses the threshold is kept.
        cutoff = torch.zeros_like(cumulative, dtype=torch.bool)
        cutoff[..., 1:] = cumulative[..., :-1] > top_p
        cutoff_values = torch.where(cutoff, float("-inf"), 0.0)
        filtered = filtered.scatter(-1, sorted_indices, sorted_logits + cutoff_values)
    return filtered


def sample_tokens(
    scores: torch.Tensor,
    *,
    temperature: float = 1.0,
    top_k: int = 0,
    top_p: float = 1.0,
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    """Draw one token per row from the filtered distribution."""

    if temperature != 1.0:
        scores = scores / float(temperature)
    scores = apply_top_k_top_p(scores, top_k, top_p)
    probs = F.softmax(scores, dim=-1)
    if generator is not None and generator.device != probs.device:
        probs = probs.to(generator.device)
    return torch.multinomial(probs, num_samples=1, generator=generator).squeeze(-1)


def _expand_batch_kwargs(kwargs: Mapping[str, Any], batch: int, copies: int) -> Dict[str, Any]:
    expanded: Dict[str, Any] = {}
    for key, value in kwargs.items():
        if isinstance(value, torch.Tensor) and value.dim() > 0 and value.size(0) == batch:
            expanded[key] = value.repeat_interleave(copies, dim=0)
        else:
            expanded[key] = value
    return expanded


def _pad_stack(sequences: Sequence[torch.Tensor], pad_token_id: int) -> torch.Tensor:
    length = max(sequence.size(0) for sequence in sequences)
    rows = [
        F.pad(sequence, (0, length - sequence.size(0)), value=pad_token_id)
        for sequence in sequences
    ]
    return torch.stack(rows, dim=0)


def _as_id_tuple(value: Any) -> Tuple[int, ...]:
    if isinstance(value, int):
        return (int(value),)
    return tuple(int(item) for item in value)


__all__ = [
    "BeamHypotheses",
    "GenerationLoop",
    "apply_repetition_penalty",
    "apply_top_k_top_p",
    "generate",
    "sample_tokens",
]
