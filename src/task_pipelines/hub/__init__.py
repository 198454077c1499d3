"""Artifact cache and remote resource helpers."""

from .download import fetch_bytes, is_remote
from .file_cache import FileCache, ProgressCallback, tqdm_progress

__all__ = ["FileCache", "ProgressCallback", "fetch_bytes", "is_remote", "tqdm_progress"]
