"""Cross-modal inference pipelines sharing one normalize/invoke/post-process core."""

from importlib import import_module
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env", override=False)

__all__ = (
    "config",
    "errors",
    "hub",
    "inference",
    "inputs",
    "media",
    "pipelines",
    "postprocess",
    "utils",
    "build_pipeline",
)


def __getattr__(name: str) -> Any:
    if name == "build_pipeline":
        from .pipelines import build_pipeline

        globals()[name] = build_pipeline
        return build_pipeline
    if name in __all__:
        module = import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
