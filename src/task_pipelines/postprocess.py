"""Numeric post-processing shared by the task pipelines.

Everything here operates on ``torch`` tensors and is free of model or
tokenizer state, so the helpers can be tested with plain literals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from .errors import ConfigurationError

TensorLike = Union[torch.Tensor, Sequence[float], np.ndarray]

PoolingMode = Literal["none", "mean", "cls", "first_token", "eos", "last_token"]
QuantizePrecision = Literal["binary", "ubinary"]

POOLING_MODES: Tuple[str, ...] = ("none", "mean", "cls", "first_token", "eos", "last_token")
QUANTIZE_PRECISIONS: Tuple[str, ...] = ("binary", "ubinary")


def _as_float_tensor(values: TensorLike) -> torch.Tensor:
    if isinstance(values, torch.Tensor):
        return values.detach().to(torch.float32)
    return torch.as_tensor(np.asarray(values, dtype=np.float32))


# --------------------------------------------------------------------- #
# Probabilities and ranking
# --------------------------------------------------------------------- #


def softmax(values: TensorLike, dim: int = -1) -> torch.Tensor:
    """Numerically stable softmax over ``dim``.

    The maximum is subtracted before exponentiating. Entries equal to
    ``-inf`` receive exactly zero probability; a slice that is entirely
    ``-inf`` yields all zeros instead of NaN.
    """

    tensor = _as_float_tensor(values)
    peak = tensor.amax(dim=dim, keepdim=True)
    peak = torch.where(torch.isfinite(peak), peak, torch.zeros_like(peak))
    exps = torch.exp(tensor - peak)
    total = exps.sum(dim=dim, keepdim=True)
    return exps / total.clamp_min(torch.finfo(exps.dtype).tiny)


def sigmoid(values: TensorLike) -> torch.Tensor:
    return torch.sigmoid(_as_float_tensor(values))


def top_k(scores: TensorLike, k: Optional[int] = None) -> List[Tuple[float, int]]:
    """Return the ``k`` highest ``(value, index)`` pairs of a 1-D score vector.

    ``k`` is clamped to the number of labels and ``None`` means all labels.
    Ties keep their original index order.
    """

    tensor = _as_float_tensor(scores).reshape(-1)
    count = tensor.numel()
    if k is None:
        k = count
    if k < 0:
        raise ConfigurationError(f"top_k must be non-negative, received {k}.")
    k = min(int(k), count)
    values, indices = torch.sort(tensor, descending=True, stable=True)
    return [(float(values[i].item()), int(indices[i].item())) for i in range(k)]


# --------------------------------------------------------------------- #
# Extractive QA
# --------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class CandidateSpan:
    """Token-index interval of a candidate answer, inclusive on both ends."""

    start: int
    end: int
    score: float

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Span start {self.start} exceeds end {self.end}.")


def score_spans(
    start_logits: TensorLike,
    end_logits: TensorLike,
    valid_mask: TensorLike,
    top_k: Optional[int] = 1,
) -> List[CandidateSpan]:
    """Rank answer spans by ``P(start) * P(end)``.

    Positions where ``valid_mask`` is false are forced to ``-inf`` before the
    softmax. Position 0 (the CLS token) is always kept in the softmax, since
    some models put the "no answer" mass there, and its probability is then
    zeroed so it only wins when nothing else has probability. All pairs with
    ``start <= end`` are scored, an O(L^2) search.
    """

    start = _as_float_tensor(start_logits).reshape(-1).clone()
    end = _as_float_tensor(end_logits).reshape(-1).clone()
    mask = torch.as_tensor(valid_mask).reshape(-1).to(torch.bool).clone()
    if not (start.numel() == end.numel() == mask.numel()):
        raise ValueError("start_logits, end_logits and valid_mask must share one length.")
    length = start.numel()
    if length == 0:
        return []

    mask[0] = True
    start = start.masked_fill(~mask, float("-inf"))
    end = end.masked_fill(~mask, float("-inf"))

    start_probs = softmax(start)
    end_probs = softmax(end)
    start_probs[0] = 0.0
    end_probs[0] = 0.0

    pair_scores = start_probs[:, None] * end_probs[None, :]
    ordered = torch.triu(torch.ones(length, length, dtype=torch.bool))
    starts, ends = torch.nonzero(ordered, as_tuple=True)
    flat = pair_scores[starts, ends]
    order = torch.sort(flat, descending=True, stable=True).indices
    limit = order.numel() if top_k is None else min(int(top_k), order.numel())
    return [
        CandidateSpan(
            start=int(starts[idx].item()),
            end=int(ends[idx].item()),
            score=float(flat[idx].item()),
        )
        for idx in order[:limit]
    ]


# --------------------------------------------------------------------- #
# Bounding boxes
# --------------------------------------------------------------------- #


def center_to_corners(boxes: torch.Tensor) -> torch.Tensor:
    """Convert ``(cx, cy, w, h)`` boxes to ``(xmin, ymin, xmax, ymax)``."""

    cx, cy, w, h = boxes.unbind(-1)
    return torch.stack((cx - 0.5 * w, cy - 0.5 * h, cx + 0.5 * w, cy + 0.5 * h), dim=-1)


def decode_boxes(
    boxes: torch.Tensor,
    image_size: Optional[Tuple[int, int]] = None,
    *,
    box_format: Literal["center", "corners"] = "center",
) -> torch.Tensor:
    """Map normalised model boxes to corner form.

    With ``image_size=(height, width)`` the corners are scaled to pixels,
    clamped to the image and rounded to integers; otherwise they stay in
    0..1 fraction space.
    """

    if box_format not in ("center", "corners"):
        raise ConfigurationError(f"Unknown box format {box_format!r}.")
    boxes = boxes.detach().to(torch.float32)
    corners = center_to_corners(boxes) if box_format == "center" else boxes
    if image_size is None:
        return corners.clamp(0.0, 1.0)
    height, width = (float(value) for value in image_size)
    bounds = torch.tensor([width, height, width, height], dtype=corners.dtype)
    scaled = torch.minimum((corners * bounds).clamp_min(0.0), bounds)
    return torch.round(scaled).to(torch.int64)


def post_process_object_detection(
    logits: torch.Tensor,
    pred_boxes: torch.Tensor,
    threshold: float = 0.5,
    target_sizes: Optional[Sequence[Tuple[int, int]]] = None,
    *,
    box_format: Literal["center", "corners"] = "center",
    use_sigmoid: bool = False,
) -> List[Dict[str, torch.Tensor]]:
    """Turn detector logits and boxes into thresholded per-image detections.

    With softmax scoring the last class is the "no object" class and is
    dropped, following the DETR convention.
    """

    if logits.dim() != 3 or pred_boxes.dim() != 3:
        raise ValueError("logits and pred_boxes must be shaped [batch, queries, ...].")
    if target_sizes is not None and len(target_sizes) != logits.size(0):
        raise ValueError("target_sizes must provide one (height, width) pair per image.")
    if use_sigmoid:
        probs = sigmoid(logits)
    else:
        probs = softmax(logits)[..., :-1]
    scores, classes = probs.max(dim=-1)

    results: List[Dict[str, torch.Tensor]] = []
    for index in range(logits.size(0)):
        keep = scores[index] > threshold
        size = None if target_sizes is None else tuple(target_sizes[index])
        results.append(
            {
                "scores": scores[index][keep],
                "classes": classes[index][keep],
                "boxes": decode_boxes(pred_boxes[index][keep], size, box_format=box_format),
            }
        )
    return results


def get_bounding_box(box: Sequence[float], as_integer: bool) -> Dict[str, Union[int, float]]:
    """Name the four corner fields of ``box``."""

    values = [float(value) for value in box]
    if as_integer:
        values = [int(value) for value in values]
    xmin, ymin, xmax, ymax = values
    return {"xmin": xmin, "ymin": ymin, "xmax": xmax, "ymax": ymax}


# --------------------------------------------------------------------- #
# Embeddings
# --------------------------------------------------------------------- #


def mean_pooling(last_hidden_state: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
    """Attention-mask weighted average over the sequence axis."""

    mask = attention_mask.to(last_hidden_state.dtype).unsqueeze(-1)
    summed = (last_hidden_state * mask).sum(dim=1)
    counts = mask.sum(dim=1).clamp_min(1e-9)
    return summed / counts


def pool_hidden_states(
    hidden: torch.Tensor,
    pooling: str,
    attention_mask: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    if pooling == "none":
        return hidden
    if pooling == "mean":
        if attention_mask is None:
            attention_mask = torch.ones(hidden.shape[:2], dtype=hidden.dtype)
        return mean_pooling(hidden, attention_mask)
    if pooling in ("cls", "first_token"):
        return hidden[:, 0]
    if pooling in ("eos", "last_token"):
        return hidden[:, -1]
    raise ConfigurationError(
        f"Pooling method {pooling!r} not supported; expected one of {POOLING_MODES}."
    )


def l2_normalize(values: torch.Tensor, dim: int = -1, eps: float = 1e-12) -> torch.Tensor:
    norm = values.norm(p=2, dim=dim, keepdim=True).clamp_min(eps)
    return values / norm


def quantize_embeddings(embeddings: torch.Tensor, precision: str = "binary") -> torch.Tensor:
    """Pack the sign bit of each dimension eight-per-byte.

    ``ubinary`` yields ``uint8`` bytes; ``binary`` shifts each byte by -128
    into ``int8``.
    """

    if precision not in QUANTIZE_PRECISIONS:
        raise ConfigurationError(
            f"Quantization precision {precision!r} not supported; expected one of "
            f"{QUANTIZE_PRECISIONS}."
        )
    if embeddings.dim() != 2:
        raise ValueError("Embeddings must be 2-D [batch, dim] to be quantized.")
    if embeddings.size(-1) % 8 != 0:
        raise ValueError("The embedding dimension must be a multiple of 8 to be quantized.")
    bits = (embeddings.detach().cpu().numpy() > 0).astype(np.uint8)
    packed = np.packbits(bits, axis=-1)
    if precision == "binary":
        return torch.from_numpy((packed.astype(np.int16) - 128).astype(np.int8))
    return torch.from_numpy(packed)


__all__ = [
    "CandidateSpan",
    "POOLING_MODES",
    "QUANTIZE_PRECISIONS",
    "center_to_corners",
    "decode_boxes",
    "get_bounding_box",
    "l2_normalize",
    "mean_pooling",
    "pool_hidden_states",
    "post_process_object_detection",
    "quantize_embeddings",
    "score_spans",
    "sigmoid",
    "softmax",
    "top_k",
]
