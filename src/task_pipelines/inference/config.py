"""Configuration for the generation and denoising loops."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from ..errors import ConfigurationError

TokenIds = Union[int, Sequence[int]]


@dataclass(slots=True)
class GenerationConfig:
    """Decoding controls for the autoregressive loop.

    ``max_new_tokens=None`` leaves the loop bounded only by the
    end-of-sequence id, which the loop then insists on.
    """

    max_new_tokens: Optional[int] = 20
    do_sample: bool = False
    temperature: float = 1.0
    top_k: int = 0
    top_p: float = 1.0
    repetition_penalty: float = 1.0
    num_beams: int = 1
    length_penalty: float = 1.0
    early_stopping: bool = False
    num_return_sequences: int = 1
    eos_token_id: Optional[TokenIds] = None
    pad_token_id: Optional[int] = None
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_new_tokens is not None:
            self.max_new_tokens = int(self.max_new_tokens)
            if self.max_new_tokens < 1:
                raise ConfigurationError(
                    f"GenerationConfig.max_new_tokens must be >= 1, received {self.max_new_tokens}."
                )
        if self.temperature <= 0.0:
            raise ConfigurationError("GenerationConfig.temperature must be positive.")
        if self.top_k < 0:
            raise ConfigurationError("GenerationConfig.top_k must be non-negative.")
        if not 0.0 < self.top_p <= 1.0:
            raise ConfigurationError("GenerationConfig.top_p must lie within (0, 1].")
        if self.repetition_penalty <= 0.0:
            raise ConfigurationError("GenerationConfig.repetition_penalty must be positive.")
        if self.num_beams < 1:
            raise ConfigurationError("GenerationConfig.num_beams must be >= 1.")
        if self.num_return_sequences < 1:
            raise ConfigurationError("GenerationConfig.num_return_sequences must be >= 1.")
        if self.num_beams > 1 and self.do_sample:
            raise ConfigurationError("Beam sampling is not supported; set do_sample=False.")
        if self.num_beams > 1 and self.num_return_sequences > self.num_beams:
            raise ConfigurationError(
                "GenerationConfig.num_return_sequences cannot exceed num_beams "
                f"({self.num_return_sequences} > {self.num_beams})."
            )
        if self.num_beams == 1 and not self.do_sample and self.num_return_sequences > 1:
            raise ConfigurationError(
                "Greedy decoding yields a single sequence; use sampling or beam search "
                "for num_return_sequences > 1."
            )
        self.eos_token_id = _normalise_token_ids(self.eos_token_id)

    @property
    def eos_token_ids(self) -> Tuple[int, ...]:
        value = self.eos_token_id
        if value is None:
            return tuple()
        if isinstance(value, int):
            return (value,)
        return tuple(value)

    @property
    def mode(self) -> str:
        if self.num_beams > 1:
            return "beam"
        return "sample" if self.do_sample else "greedy"

    def with_overrides(self, overrides: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> "GenerationConfig":
        """Return a validated copy with known fields replaced."""

        payload: Dict[str, Any] = dict(overrides or {})
        payload.update(kwargs)
        known = {item.name for item in fields(self)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigurationError(f"Unknown generation options: {', '.join(unknown)}.")
        return replace(self, **payload)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DenoiseConfig:
    """Controls for the latent denoising loop used by speech synthesis."""

    num_inference_steps: int = 5
    speed: float = 1.05
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        self.num_inference_steps = int(self.num_inference_steps)
        if self.num_inference_steps <= 0:
            raise ConfigurationError(
                "DenoiseConfig.num_inference_steps must be positive, "
                f"received {self.num_inference_steps}."
            )
        if self.speed <= 0.0:
            raise ConfigurationError("DenoiseConfig.speed must be positive.")

    def with_overrides(self, overrides: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> "DenoiseConfig":
        payload: Dict[str, Any] = dict(overrides or {})
        payload.update(kwargs)
        known = {item.name for item in fields(self)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigurationError(f"Unknown denoising options: {', '.join(unknown)}.")
        return replace(self, **payload)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def coerce_generation_config(value: Any) -> GenerationConfig:
    if isinstance(value, GenerationConfig):
        return value
    if isinstance(value, Mapping):
        return GenerationConfig().with_overrides(value)
    if value is None:
        return GenerationConfig()
    raise TypeError("generation config must be a Mapping, GenerationConfig, or None.")


def coerce_denoise_config(value: Any) -> DenoiseConfig:
    if isinstance(value, DenoiseConfig):
        return value
    if isinstance(value, Mapping):
        return DenoiseConfig().with_overrides(value)
    if value is None:
        return DenoiseConfig()
    raise TypeError("denoise config must be a Mapping, DenoiseConfig, or None.")


def _normalise_token_ids(value: Optional[TokenIds]) -> Optional[TokenIds]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError("Token ids must be integers.")
    if isinstance(value, int):
        return int(value)
    ids = tuple(int(item) for item in value)
    if not ids:
        return None
    return ids[0] if len(ids) == 1 else ids


__all__ = [
    "DenoiseConfig",
    "GenerationConfig",
    "coerce_denoise_config",
    "coerce_generation_config",
]
