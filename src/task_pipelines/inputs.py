"""Canonicalise call arguments into an ordered batch plus a batching flag."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, List, Mapping, Sequence, Tuple, TypeVar

from .errors import InputShapeError

T = TypeVar("T")

Chat = List[Mapping[str, Any]]


def is_chat(value: Any) -> bool:
    """Return ``True`` when ``value`` is an ordered list of role/content messages."""

    if not isinstance(value, (list, tuple)) or not value:
        return False
    return all(
        isinstance(message, Mapping) and "role" in message and "content" in message
        for message in value
    )


@dataclass(frozen=True, slots=True)
class NormalizedBatch(Generic[T]):
    """Ordered batch of logical inputs.

    ``was_batched`` is set when the caller passed a list, even of length one;
    only a bare scalar input is unwrapped on the way out.
    """

    items: Tuple[T, ...]
    was_batched: bool
    is_chat: bool = False

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def unwrap(self, results: Sequence[Any]) -> Any:
        """Re-apply the batching flag to per-item ``results``."""

        if len(results) != len(self.items):
            raise ValueError(
                f"Expected {len(self.items)} results to match the batch, received {len(results)}."
            )
        if self.was_batched:
            return list(results)
        return results[0]


def normalize_inputs(value: Any, *, allow_chat: bool = False) -> NormalizedBatch[Any]:
    """Normalise a scalar, list of scalars, chat, or list of chats.

    Raises
    ------
    InputShapeError
        When the input matches none of the recognised shapes, e.g. an empty
        list, a list mixing chats and plain items, or chats where the task
        does not accept them.
    """

    if isinstance(value, (list, tuple)):
        if not value:
            raise InputShapeError("Expected at least one input, received an empty list.")
        if is_chat(value):
            if not allow_chat:
                raise InputShapeError("Chat-structured input is not supported by this task.")
            return NormalizedBatch(items=(list(value),), was_batched=False, is_chat=True)
        chats = [is_chat(item) for item in value]
        if all(chats):
            if not allow_chat:
                raise InputShapeError("Chat-structured input is not supported by this task.")
            return NormalizedBatch(
                items=tuple(list(item) for item in value), was_batched=True, is_chat=True
            )
        if any(chats) or any(isinstance(item, (list, tuple)) for item in value):
            raise InputShapeError(
                "Input must be an item, a list of items, a chat, or a list of chats."
            )
        return NormalizedBatch(items=tuple(value), was_batched=True)
    if isinstance(value, Mapping):
        raise InputShapeError(
            "Input must be an item, a list of items, a chat, or a list of chats; "
            "received a bare mapping."
        )
    if value is None:
        raise InputShapeError("Input must not be None.")
    return NormalizedBatch(items=(value,), was_batched=False)


def enforce_batch_ceiling(batch: NormalizedBatch[Any], limit: int, task: str) -> None:
    """Raise when ``batch`` holds more items than ``task`` can process at once."""

    if len(batch) > limit:
        raise InputShapeError(
            f"The {task} pipeline currently only supports a batch size of {limit}; "
            f"received {len(batch)} inputs."
        )


def pair_inputs(
    first: NormalizedBatch[Any],
    second: NormalizedBatch[Any],
    *,
    names: Tuple[str, str] = ("question", "context"),
) -> List[Tuple[Any, Any]]:
    """Zip two batches, broadcasting a singleton side across the other."""

    if len(first) == len(second):
        return list(zip(first.items, second.items))
    if len(first) == 1:
        return [(first.items[0], item) for item in second.items]
    if len(second) == 1:
        return [(item, second.items[0]) for item in first.items]
    raise InputShapeError(
        f"Received {len(first)} {names[0]}s and {len(second)} {names[1]}s; "
        "lengths must match or one side must be a single item."
    )


__all__ = [
    "Chat",
    "NormalizedBatch",
    "enforce_batch_ceiling",
    "is_chat",
    "normalize_inputs",
    "pair_inputs",
]
