"""Reconciliation results.

A ``SyncReport`` is what every pull hands back.  Recoverable per-item
failures are recorded as ``ItemFailure`` entries instead of being raised, so
one bad child never hides the outcome of its siblings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from difyascode.sync_engine.errors import ErrorKind, SyncError


@dataclass
class ItemFailure:
    """A single entity that could not be reconciled."""

    scope: str
    item: str
    kind: ErrorKind
    message: str

    @classmethod
    def from_error(cls, scope: str, item: str, exc: BaseException) -> ItemFailure:
        kind = exc.kind if isinstance(exc, SyncError) else ErrorKind.REMOTE_UNAVAILABLE
        return cls(scope=scope, item=item, kind=kind, message=str(exc) or type(exc).__name__)


@dataclass
class SyncReport:
    created: list[Path] = field(default_factory=list)
    updated: list[Path] = field(default_factory=list)
    unchanged: list[Path] = field(default_factory=list)
    deleted: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def modified(self) -> int:
        """Number of local entities written or removed."""
        return len(self.created) + len(self.updated) + len(self.deleted)

    def fail(self, scope: str, item: str, exc: BaseException) -> None:
        self.failures.append(ItemFailure.from_error(scope, item, exc))

    def merge(self, other: SyncReport) -> SyncReport:
        self.created.extend(other.created)
        self.updated.extend(other.updated)
        self.unchanged.extend(other.unchanged)
        self.deleted.extend(other.deleted)
        self.skipped.extend(other.skipped)
        self.failures.extend(other.failures)
        return self

    def summary(self) -> str:
        parts = [
            f"{len(self.created)} created",
            f"{len(self.updated)} updated",
            f"{len(self.deleted)} deleted",
        ]
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        if self.failures:
            parts.append(f"{len(self.failures)} failed")
        return ", ".join(parts)
