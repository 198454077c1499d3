"""Seeding helpers so sampling and latent noise can be replayed."""

from __future__ import annotations

import random
from typing import Optional, Union

import numpy as np
import torch


def seed_everything(seed: Optional[int], *, deterministic: bool = False) -> Optional[int]:
    """Seed the Python, NumPy, and torch global RNGs and return the applied seed.

    ``seed=None`` is a no-op returning ``None``, so configuration values can
    be passed straight through. ``deterministic=True`` additionally asks
    torch for deterministic kernels, which only changes results on CUDA.
    """

    if seed is None:
        return None
    value = int(seed)
    random.seed(value)
    np.random.seed(value)
    # Seeds every device's default generator, CUDA included.
    torch.manual_seed(value)
    if deterministic:
        torch.use_deterministic_algorithms(True, warn_only=True)
        if torch.backends.cudnn.is_available():
            torch.backends.cudnn.deterministic = True
            torch.backends.cudnn.benchmark = False
    return value


def make_generator(
    seed: Optional[int] = None,
    *,
    device: Union[str, torch.device] = "cpu",
) -> torch.Generator:
    """Return a ``torch.Generator`` usable as the random source of a sampling loop.

    An unseeded generator draws its seed from the global torch RNG, so
    ``seed_everything`` still makes unseeded runs reproducible.
    """

    generator = torch.Generator(device=device)
    if seed is None:
        seed = int(torch.randint(0, 2**62, (1,)).item())
    generator.manual_seed(int(seed))
    return generator
