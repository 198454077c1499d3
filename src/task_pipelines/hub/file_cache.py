"""File-system artifact cache with ``match``/``put`` semantics."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Union

from tqdm import tqdm

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, float]], None]
ByteStream = Union[bytes, bytearray, Iterable[bytes], Any]

PARTIAL_SUFFIX = ".part"


def progress_report(loaded: int, total: int) -> Dict[str, float]:
    """Progress payload handed to a :data:`ProgressCallback`."""

    return {
        "progress_percent": (loaded / total) * 100.0 if total else 0.0,
        "bytes_loaded": loaded,
        "bytes_total": total,
    }


class FileCache:
    """Stores downloaded artifacts below ``root`` keyed by relative path.

    :meth:`put` streams into a hidden sibling file and renames it over the
    final path once the stream is exhausted, so :meth:`match` never sees a
    truncated blob. A failed write removes the partial file before the
    error propagates.
    """

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).expanduser()

    def _path_for(self, key: str) -> Path:
        root = self.root.resolve()
        candidate = (root / key).resolve()
        if candidate != root and root not in candidate.parents:
            raise ValueError(f"Cache key {key!r} escapes the cache directory.")
        return candidate

    def match(self, key: str) -> Optional[Path]:
        """Return the cached file for ``key`` or ``None``."""

        path = self._path_for(key)
        return path if path.is_file() else None

    def put(
        self,
        key: str,
        stream: ByteStream,
        progress_callback: Optional[ProgressCallback] = None,
        *,
        total: Optional[int] = None,
    ) -> Path:
        """Write ``stream`` under ``key``, reporting progress after every chunk.

        ``stream`` may be raw bytes, an iterable of byte chunks, or an
        ``httpx.Response`` opened in streaming mode, whose ``Content-Length``
        header supplies ``total`` when not given.
        """

        path = self._path_for(key)
        chunks, expected = _iter_chunks(stream)
        if total is None:
            total = expected
        total = int(total or 0)
        loaded = 0
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            "wb", dir=path.parent, prefix=f".{path.name}.", suffix=PARTIAL_SUFFIX, delete=False
        )
        partial = Path(handle.name)
        try:
            with handle:
                for chunk in chunks:
                    if not chunk:
                        continue
                    handle.write(chunk)
                    loaded += len(chunk)
                    if progress_callback is not None:
                        progress_callback(progress_report(loaded, total))
            os.replace(partial, path)
        except BaseException:
            logger.warning("cache_write_failed | key=%s | path=%s", key, path)
            partial.unlink(missing_ok=True)
            raise
        logger.debug("cache_put | key=%s | bytes=%d", key, loaded)
        return path

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        if not path.is_file():
            return False
        path.unlink()
        return True


def _iter_chunks(stream: ByteStream) -> tuple[Iterator[bytes], Optional[int]]:
    if isinstance(stream, (bytes, bytearray, memoryview)):
        data = bytes(stream)
        return iter([data]), len(data)
    iter_bytes = getattr(stream, "iter_bytes", None)
    if callable(iter_bytes):
        headers = getattr(stream, "headers", {}) or {}
        length = headers.get("Content-Length") or headers.get("content-length")
        return iter_bytes(), int(length) if length else None
    return iter(stream), None


def tqdm_progress(desc: str, **kwargs: Any) -> ProgressCallback:
    """Adapt cache progress reports to ``tqdm`` bars.

    The returned callback may serve several downloads in a row. A report
    arriving after the current bar closed, or whose ``bytes_loaded`` drops
    below its count, starts a new bar. ``callback.bar`` holds the latest.
    """

    def _new_bar(total: int) -> tqdm:
        return tqdm(desc=desc, total=total or None, unit="B", unit_scale=True, leave=False, **kwargs)

    def _callback(info: Dict[str, float]) -> None:
        total = int(info.get("bytes_total") or 0)
        loaded = int(info["bytes_loaded"])
        bar = _callback.bar  # type: ignore[attr-defined]
        if bar is None or bar.disable or loaded < bar.n:
            if bar is not None:
                bar.close()
            bar = _callback.bar = _new_bar(total)  # type: ignore[attr-defined]
        elif total and bar.total != total:
            bar.total = total
        bar.update(loaded - bar.n)
        if total and loaded >= total:
            bar.close()

    _callback.bar = None  # type: ignore[attr-defined]
    return _callback


__all__ = ["FileCache", "PARTIAL_SUFFIX", "ProgressCallback", "progress_report", "tqdm_progress"]
