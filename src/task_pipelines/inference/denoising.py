"""Fixed-step latent denoising used by latent speech synthesis models."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Mapping, Optional

import torch

from ..errors import ConfigurationError
from ..interfaces import ModelInvocation, invoke_model, model_config
from .config import DenoiseConfig, coerce_denoise_config
from .state import LatentState

LOGGER = logging.getLogger(__name__)


def compute_latent_length(
    durations: torch.Tensor,
    *,
    speed: float,
    sampling_rate: int,
    chunk_size: int,
) -> int:
    """Number of latent frames needed for the longest predicted utterance.

    ``durations`` are seconds per batch element; dividing by ``speed`` first
    means a faster speed yields a shorter latent.
    """

    if speed <= 0.0:
        raise ConfigurationError(f"speed must be positive, received {speed}.")
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk_size must be positive, received {chunk_size}.")
    longest = float((durations.detach().float() / float(speed)).max().item())
    return max(1, math.ceil(longest * float(sampling_rate) / float(chunk_size)))


class DenoisingLoop:
    """Runs a latent denoiser exactly ``num_inference_steps`` times.

    There is no early exit: every step feeds the previous output back as
    ``noisy_latents`` together with the fixed conditioning in the state.
    """

    def __init__(self, denoiser: ModelInvocation, num_inference_steps: int) -> None:
        if int(num_inference_steps) <= 0:
            raise ConfigurationError(
                f"num_inference_steps must be positive, received {num_inference_steps}."
            )
        self.denoiser = denoiser
        self.num_inference_steps = int(num_inference_steps)

    def run(self, state: LatentState) -> torch.Tensor:
        for step in range(self.num_inference_steps):
            outputs = invoke_model(
                self.denoiser,
                {
                    "style": state.style,
                    "noisy_latents": state.latents,
                    "latent_mask": state.latent_mask,
                    "encoder_outputs": state.encoder_outputs,
                    "attention_mask": state.attention_mask,
                    "timestep": state.timestep(step),
                    "num_inference_steps": state.num_steps,
                },
            )
            state.replace_latents(outputs["denoised_latents"])
        return state.latents


class LatentSpeechSynthesizer:
    """Text encoder, latent denoiser, and voice decoder run as one pipeline.

    ``stages`` maps ``text_encoder``, ``latent_denoiser`` and
    ``voice_decoder`` to model callables. The hyper-parameters come from the
    model config: ``sampling_rate``, ``base_chunk_size``,
    ``chunk_compress_factor`` and ``latent_dim``.
    """

    STAGES = ("text_encoder", "latent_denoiser", "voice_decoder")

    def __init__(self, stages: Mapping[str, Any], config: Any) -> None:
        missing = [name for name in self.STAGES if name not in stages]
        if missing:
            raise ConfigurationError(f"Latent speech model is missing stages: {', '.join(missing)}.")
        self.stages = dict(stages)
        self.sampling_rate = int(config.sampling_rate)
        self.chunk_size = int(config.base_chunk_size) * int(config.chunk_compress_factor)
        self.latent_channels = int(config.latent_dim) * int(config.chunk_compress_factor)

    @classmethod
    def from_model(cls, model: Any) -> "LatentSpeechSynthesizer":
        return cls(getattr(model, "sessions"), model_config(model))

    def generate_speech(
        self,
        input_ids: torch.Tensor,
        attention_mask: torch.Tensor,
        style: torch.Tensor,
        *,
        config: Optional[DenoiseConfig] = None,
        generator: Optional[torch.Generator] = None,
    ) -> Dict[str, torch.Tensor]:
        """Return ``waveform`` and the speed-adjusted ``durations``."""

        config = coerce_denoise_config(config)
        encoded = invoke_model(
            self.stages["text_encoder"],
            {"input_ids": input_ids, "attention_mask": attention_mask, "style": style},
        )
        durations = encoded["durations"].float() / float(config.speed)
        latent_length = compute_latent_length(
            durations, speed=1.0, sampling_rate=self.sampling_rate, chunk_size=self.chunk_size
        )
        batch = input_ids.size(0)
        device = input_ids.device
        noise = torch.randn(
            (batch, self.latent_channels, latent_length),
            generator=generator,
            device=generator.device if generator is not None else device,
        ).to(device)
        state = LatentState(
            latents=noise,
            latent_mask=torch.ones((batch, latent_length), dtype=torch.float32, device=device),
            style=style,
            encoder_outputs=encoded["last_hidden_state"],
            attention_mask=attention_mask,
            num_steps=torch.full(
                (batch,), float(config.num_inference_steps), dtype=torch.float32, device=device
            ),
        )
        LOGGER.debug(
            "denoise_start | frames=%d | steps=%d", latent_length, config.num_inference_steps
        )
        latents = DenoisingLoop(self.stages["latent_denoiser"], config.num_inference_steps).run(state)
        decoded = invoke_model(self.stages["voice_decoder"], {"latents": latents})
        return {"waveform": decoded["waveform"], "durations": durations}


__all__ = ["DenoisingLoop", "LatentSpeechSynthesizer", "compute_latent_length"]
