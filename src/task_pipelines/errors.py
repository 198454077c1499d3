"""Exception taxonomy shared by every pipeline.

None of these errors are retried internally. Failures raised by the model
itself are never wrapped and propagate to the caller unchanged.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors raised by the pipeline core."""


class InputShapeError(PipelineError, TypeError):
    """Input matches no recognised shape, or exceeds a task's batch ceiling."""


class MissingTokenError(PipelineError, ValueError):
    """A required marker token is absent from the tokenized sequence."""

    def __init__(self, token: str, message: str | None = None) -> None:
        self.token = token
        super().__init__(message or f"Required token {token!r} not found in the tokenized input.")


class ConfigurationError(PipelineError, ValueError):
    """An option lies outside its recognised set, or a loop cannot terminate."""


class UnsupportedOutputError(PipelineError, LookupError):
    """The model lacks the output head a caller asked for."""

    def __init__(self, head: str, message: str | None = None) -> None:
        self.head = head
        super().__init__(message or f"Model did not return a {head!r} output.")

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else self.head


__all__ = [
    "PipelineError",
    "InputShapeError",
    "MissingTokenError",
    "ConfigurationError",
    "UnsupportedOutputError",
]
