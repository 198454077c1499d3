"""Turn image, audio, and embedding arguments into decoded in-memory objects."""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

import librosa
import numpy as np
import torch
from PIL import Image

from .errors import InputShapeError
from .hub import FileCache, ProgressCallback, fetch_bytes

ImageInput = Union[str, Path, Image.Image, np.ndarray, torch.Tensor]
AudioInput = Union[str, Path, np.ndarray, torch.Tensor]


@dataclass(slots=True)
class RawAudio:
    """Mono waveform samples with their sampling rate."""

    audio: np.ndarray
    sampling_rate: int

    @property
    def duration(self) -> float:
        return float(self.audio.shape[-1]) / float(self.sampling_rate)

    def to_tensor(self) -> torch.Tensor:
        return torch.from_numpy(np.ascontiguousarray(self.audio))


def load_image(
    item: ImageInput,
    *,
    cache: Optional[FileCache] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Image.Image:
    if isinstance(item, Image.Image):
        return item
    if isinstance(item, (str, Path)):
        data = fetch_bytes(item, cache=cache, progress_callback=progress_callback)
        image = Image.open(io.BytesIO(data))
        image.load()
        return image.convert("RGB")
    if isinstance(item, torch.Tensor):
        item = item.detach().cpu().numpy()
        if item.ndim == 3 and item.shape[0] in (1, 3, 4):
            item = np.moveaxis(item, 0, -1)
    if isinstance(item, np.ndarray):
        array = item
        if array.dtype != np.uint8:
            array = np.clip(array, 0.0, 255.0).astype(np.uint8)
        if array.ndim == 3 and array.shape[-1] == 1:
            array = array[..., 0]
        return Image.fromarray(array)
    raise InputShapeError(f"Unsupported image input of type {type(item).__name__}.")


def prepare_images(
    items: Iterable[ImageInput],
    *,
    cache: Optional[FileCache] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> List[Image.Image]:
    return [load_image(item, cache=cache, progress_callback=progress_callback) for item in items]


def load_audio(
    item: AudioInput,
    sampling_rate: int,
    *,
    cache: Optional[FileCache] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> np.ndarray:
    """Decode and resample ``item`` to mono float32 at ``sampling_rate``."""

    if isinstance(item, torch.Tensor):
        item = item.detach().cpu().numpy()
    if isinstance(item, np.ndarray):
        audio = item.astype(np.float32, copy=False)
        if audio.ndim == 2:
            audio = audio.mean(axis=0)
        if audio.ndim != 1:
            raise InputShapeError("Raw audio must be a 1-D waveform or a [channels, samples] array.")
        return audio
    if isinstance(item, (str, Path)):
        data = fetch_bytes(item, cache=cache, progress_callback=progress_callback)
        audio, _ = librosa.load(io.BytesIO(data), sr=sampling_rate, mono=True)
        return audio.astype(np.float32, copy=False)
    raise InputShapeError(f"Unsupported audio input of type {type(item).__name__}.")


def prepare_audios(
    items: Iterable[AudioInput],
    sampling_rate: int,
    *,
    cache: Optional[FileCache] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> List[np.ndarray]:
    return [
        load_audio(item, sampling_rate, cache=cache, progress_callback=progress_callback)
        for item in items
    ]


def load_speaker_embeddings(
    value: Any,
    *,
    cache: Optional[FileCache] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> torch.Tensor:
    """Return speaker embeddings with a leading batch axis.

    Accepts a tensor, a float32 array, or a path/URL to raw float32 bytes.
    Flat vectors become ``[1, dim]``; tensors with a batch axis (such as
    latent speech style tensors) pass through unchanged.
    """

    if isinstance(value, torch.Tensor):
        return value.reshape(1, -1) if value.dim() == 1 else value
    if isinstance(value, (str, Path)):
        data = fetch_bytes(value, cache=cache, progress_callback=progress_callback)
        value = np.frombuffer(data, dtype=np.float32)
    if isinstance(value, np.ndarray):
        return torch.from_numpy(np.array(value, dtype=np.float32)).reshape(1, -1)
    raise InputShapeError(
        "Speaker embeddings must be a tensor, a float32 array, a path, or a URL."
    )


__all__ = [
    "AudioInput",
    "ImageInput",
    "RawAudio",
    "load_audio",
    "load_image",
    "load_speaker_embeddings",
    "prepare_audios",
    "prepare_images",
]
