"""Runtime configuration loaded from YAML with environment overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from .errors import ConfigurationError
from .hub import FileCache
from .inference.config import (
    DenoiseConfig,
    GenerationConfig,
    coerce_denoise_config,
    coerce_generation_config,
)
from .utils.env import env_setting
from .utils.logging import resolve_level

DEFAULT_CACHE_DIR = Path("~/.cache/task_pipelines")


@dataclass(slots=True)
class RuntimeConfig:
    """Defaults shared by every pipeline built through :func:`build_pipeline`."""

    log_level: str = "INFO"
    cache_dir: Optional[Path] = DEFAULT_CACHE_DIR
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    denoise: DenoiseConfig = field(default_factory=DenoiseConfig)

    def __post_init__(self) -> None:
        try:
            resolve_level(self.log_level)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown log level {self.log_level!r}.") from exc
        self.log_level = str(self.log_level).upper()
        if self.cache_dir is not None:
            self.cache_dir = Path(self.cache_dir).expanduser()
        self.generation = coerce_generation_config(self.generation)
        self.denoise = coerce_denoise_config(self.denoise)

    def file_cache(self) -> Optional[FileCache]:
        if self.cache_dir is None:
            return None
        return FileCache(self.cache_dir)


def load_runtime_config(path: Optional[Union[str, Path]] = None) -> RuntimeConfig:
    """Read ``path`` (if any), then apply ``TASK_PIPELINES_*`` overrides.

    Recognised environment variables are ``TASK_PIPELINES_LOG_LEVEL`` and
    ``TASK_PIPELINES_CACHE_DIR``; ``TASK_PIPELINES_CACHE_DIR=none`` disables
    the cache.
    """

    payload: dict[str, Any] = {}
    if path is not None:
        with Path(path).expanduser().open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, Mapping):
            raise ConfigurationError(f"Runtime config {path} must contain a mapping.")
        payload.update(loaded)
    unknown = sorted(set(payload) - {"log_level", "cache_dir", "generation", "denoise"})
    if unknown:
        raise ConfigurationError(f"Unknown runtime config keys: {', '.join(unknown)}.")

    log_level = env_setting("LOG_LEVEL")
    if log_level is not None:
        payload["log_level"] = log_level
    cache_dir = env_setting("CACHE_DIR")
    if cache_dir is not None:
        payload["cache_dir"] = None if cache_dir.lower() == "none" else cache_dir
    return RuntimeConfig(**payload)


__all__ = ["DEFAULT_CACHE_DIR", "RuntimeConfig", "load_runtime_config"]
