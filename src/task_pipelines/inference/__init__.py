"""Iterative execution loops shared by the generative pipelines."""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import Dict, Iterable, Tuple

__all__ = [
    "BeamHypotheses",
    "DecodeState",
    "DenoiseConfig",
    "DenoisingLoop",
    "GenerationConfig",
    "GenerationLoop",
    "LatentSpeechSynthesizer",
    "LatentState",
    "PastKeyValues",
    "compute_latent_length",
    "generate",
]

_EXPORTS: Dict[str, Tuple[str, ...]] = {
    "config": ("DenoiseConfig", "GenerationConfig"),
    "denoising": ("DenoisingLoop", "LatentSpeechSynthesizer", "compute_latent_length"),
    "generation": ("BeamHypotheses", "GenerationLoop", "generate"),
    "state": ("DecodeState", "LatentState", "PastKeyValues"),
}


def _load_module(name: str) -> ModuleType:
    return importlib.import_module(f"task_pipelines.inference.{name}")


def __getattr__(name: str):
    for module_name, symbols in _EXPORTS.items():
        if name in symbols:
            module = _load_module(module_name)
            return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> Iterable[str]:
    return sorted(set(__all__))
