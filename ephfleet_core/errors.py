"""Error types shared by every ephfleet component.

Failures are tagged with an :class:`ErrorKind` so callers can branch on the
kind of problem instead of on the concrete exception class.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence


class ErrorKind(enum.Enum):
    """Categories of failure reported by lifecycle operations."""

    INVALID_INPUT = "invalid-input"
    NOT_FOUND = "not-found"
    ALREADY_EXISTS = "already-exists"
    LOCK = "lock"
    PROVIDER = "provider"
    PARTIAL_FAILURE = "partial-failure"


class FleetError(RuntimeError):
    """Base error carrying a machine readable ``kind``."""

    def __init__(self, kind: ErrorKind, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\n{self.hint}"
        return self.message


def invalid_input(message: str, *, hint: str | None = None) -> FleetError:
    return FleetError(ErrorKind.INVALID_INPUT, message, hint=hint)


def not_found(message: str, *, hint: str | None = None) -> FleetError:
    return FleetError(ErrorKind.NOT_FOUND, message, hint=hint)


def already_exists(name: str) -> FleetError:
    return FleetError(ErrorKind.ALREADY_EXISTS, f"cluster {name} already exists")


class ProviderError(FleetError):
    """Failure reported by a cloud backend, attributed to that backend."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(ErrorKind.PROVIDER, f"{provider}: {message}")
        self.provider = provider


@dataclass(frozen=True, slots=True)
class IndexedError:
    """Failure of one unit (node, cluster or provider) of a fan-out."""

    index: int
    error: BaseException
    output: str = ""

    def render(self) -> str:
        line = f"{self.index}: {self.error}"
        if self.output:
            line += f": {self.output.strip()}"
        return line


class PartialFailure(FleetError):
    """Aggregate of independent unit failures, ordered by index."""

    def __init__(self, failures: Sequence[IndexedError], *, description: str | None = None) -> None:
        ordered = sorted(failures, key=lambda item: item.index)
        header = description or "operation failed"
        lines = [f"{header} ({len(ordered)} failed)"]
        lines.extend(item.render() for item in ordered)
        super().__init__(ErrorKind.PARTIAL_FAILURE, "\n".join(lines))
        self.failures: list[IndexedError] = ordered

    @property
    def errors(self) -> list[BaseException]:
        return [item.error for item in self.failures]


def combine_errors(
    errors: Iterable[Optional[BaseException]],
    *,
    description: str | None = None,
) -> Optional[BaseException]:
    """Combine independent errors without dropping any of them.

    ``None`` entries are ignored. A single error is returned unchanged; two or
    more are wrapped in a :class:`PartialFailure` indexed by their position.
    """

    indexed = [
        IndexedError(index, error)
        for index, error in enumerate(errors)
        if error is not None
    ]
    if not indexed:
        return None
    if len(indexed) == 1:
        return indexed[0].error
    return PartialFailure(indexed, description=description)


def raise_combined(errors: Iterable[Optional[BaseException]], *, description: str | None = None) -> None:
    """Raise the combination of ``errors`` when any of them is set."""

    combined = combine_errors(errors, description=description)
    if combined is not None:
        raise combined
