from __future__ import annotations

import pytest
import torch

from task_pipelines.inference.state import DecodeState, LatentState, reorder_cache


def _state() -> DecodeState:
    ids = torch.tensor([[5, 6], [7, 8]])
    return DecodeState(sequences=ids, attention_mask=torch.ones_like(ids))


def test_append_tokens_tracks_eos_and_pads_finished_rows() -> None:
    state = _state()
    state.append_tokens(torch.tensor([3, 9]), past_key_values=None, eos_token_ids=(3,), pad_token_id=0)
    assert state.finished.tolist() == [True, False]
    written = state.append_tokens(
        torch.tensor([9, 3]), past_key_values=None, eos_token_ids=(3,), pad_token_id=0
    )
    assert written.tolist() == [0, 3]
    assert state.all_finished
    assert state.generated_count == 2
    assert state.new_tokens.tolist() == [[3, 0], [9, 3]]
    assert state.attention_mask.size(1) == 4


def test_next_input_ids_uses_cache_after_first_step() -> None:
    state = _state()
    assert state.next_input_ids().size(1) == 2
    state.append_tokens(torch.tensor([1, 1]), past_key_values=(torch.zeros(2, 1),))
    assert state.next_input_ids().tolist() == [[1], [1]]
    state.past_key_values = None
    assert state.next_input_ids().size(1) == 3


def test_rejects_mismatched_shapes() -> None:
    with pytest.raises(ValueError):
        DecodeState(sequences=torch.zeros(2, 3, dtype=torch.long), attention_mask=torch.ones(2, 2))
    with pytest.raises(ValueError):
        _state().append_tokens(torch.tensor([1]), past_key_values=None)


def test_reorder_gathers_rows_and_cache() -> None:
    state = _state()
    state.past_key_values = ((torch.tensor([[1.0], [2.0]]), torch.tensor([[3.0], [4.0]])),)
    state.reorder(torch.tensor([1, 1]))
    assert state.sequences.tolist() == [[7, 8], [7, 8]]
    assert state.past_key_values[0][0].tolist() == [[2.0], [2.0]]


def test_reorder_cache_prefers_object_hook() -> None:
    class Cache:
        def __init__(self) -> None:
            self.order = None

        def reorder_cache(self, index):
            self.order = index.tolist()

    cache = Cache()
    assert reorder_cache(cache, torch.tensor([1, 0])) is cache
    assert cache.order == [1, 0]
    with pytest.raises(TypeError):
        reorder_cache("not a cache", torch.tensor([0]))


def test_latent_state_validates_and_counts_steps() -> None:
    state = LatentState(
        latents=torch.zeros(2, 4, 6),
        latent_mask=torch.ones(2, 6),
        style=torch.zeros(2, 3),
        encoder_outputs=torch.zeros(2, 5, 8),
        attention_mask=torch.ones(2, 5),
        num_steps=torch.full((2,), 3.0),
    )
    assert state.timestep(2).tolist() == [2.0, 2.0]
    state.replace_latents(torch.ones(2, 4, 6))
    assert state.steps_taken == 1
    with pytest.raises(ValueError):
        state.replace_latents(torch.ones(2, 4, 7))
    with pytest.raises(ValueError):
        LatentState(
            latents=torch.zeros(2, 4, 6),
            latent_mask=torch.ones(2, 5),
            style=torch.zeros(2, 3),
            encoder_outputs=torch.zeros(2, 5, 8),
            attention_mask=torch.ones(2, 5),
            num_steps=torch.full((2,), 3.0),
        )
