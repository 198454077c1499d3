"""Read local files or stream remote resources, optionally through a cache."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import httpx

from .file_cache import FileCache, ProgressCallback, progress_report

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def is_remote(location: Union[str, Path]) -> bool:
    if isinstance(location, Path):
        return False
    return urlparse(str(location)).scheme in ("http", "https")


def _cache_key(url: str) -> str:
    parsed = urlparse(url)
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
    name = Path(parsed.path).name or "resource"
    return f"{parsed.netloc}/{digest}-{name}"


def fetch_bytes(
    location: Union[str, Path],
    *,
    cache: Optional[FileCache] = None,
    client: Optional[httpx.Client] = None,
    progress_callback: Optional[ProgressCallback] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> bytes:
    """Return the bytes behind a local path or an ``http(s)`` URL.

    Remote downloads are written through ``cache`` when one is given and
    served from it on later calls. HTTP errors propagate as
    ``httpx.HTTPStatusError``.
    """

    if not is_remote(location):
        return Path(location).expanduser().read_bytes()

    url = str(location)
    if cache is not None:
        key = _cache_key(url)
        hit = cache.match(key)
        if hit is not None:
            logger.debug("cache_hit | url=%s", url)
            return hit.read_bytes()

    owns_client = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        with http.stream("GET", url) as response:
            response.raise_for_status()
            if cache is not None:
                return cache.put(key, response, progress_callback).read_bytes()
            return _read_with_progress(response, progress_callback)
    finally:
        if owns_client:
            http.close()


def _read_with_progress(response: httpx.Response, progress_callback: Optional[ProgressCallback]) -> bytes:
    if progress_callback is None:
        return response.read()
    length = response.headers.get("Content-Length")
    total = int(length) if length else 0
    buffer = bytearray()
    for chunk in response.iter_bytes():
        buffer.extend(chunk)
        progress_callback(progress_report(len(buffer), total))
    return bytes(buffer)


__all__ = ["DEFAULT_TIMEOUT", "fetch_bytes", "is_remote"]
