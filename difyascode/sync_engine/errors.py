"""Domain errors for the sync engine.

Every error carries an ``ErrorKind`` and a ``fatal`` flag:

- **fatal** errors abort the current scope (an account pull, a single push)
  but never sibling scopes;
- **recoverable** errors are caught by continue-on-error loops and recorded
  in the ``SyncReport`` as item failures.

Managers raise these, never CLI exceptions -- translating them for the
operator is the CLI's job.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path


class ErrorKind(StrEnum):
    AUTHENTICATION = "authentication"
    NOT_FOUND_LOCALLY = "not_found_locally"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    CONFLICT = "conflict"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    NAME_CONFLICT = "name_conflict"
    INVALID_RECORD = "invalid_record"
    INVALID_NAME = "invalid_name"


class SyncError(Exception):
    """Base class for all sync engine errors."""

    kind: ErrorKind = ErrorKind.REMOTE_UNAVAILABLE
    fatal: bool = False


class AuthenticationError(SyncError):
    """Bad credentials or a session that could not be refreshed."""

    kind = ErrorKind.AUTHENTICATION
    fatal = True

    def __init__(self, email: str | None = None, url: str | None = None, detail: str | None = None) -> None:
        msg = "Login failed"
        if email:
            msg += f" for {email}"
        if url:
            msg += f" at {url}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class NotFoundLocallyError(SyncError, LookupError):
    """An expected local artifact is missing."""

    kind = ErrorKind.NOT_FOUND_LOCALLY
    fatal = True

    def __init__(self, path: Path | str, what: str = "entity") -> None:
        self.path = Path(path)
        super().__init__(f"Local {what} not found: {path}")


class InvalidRecordError(SyncError, ValueError):
    """A local record exists but cannot be parsed."""

    kind = ErrorKind.INVALID_RECORD
    fatal = True

    def __init__(self, path: Path | str, detail: str) -> None:
        self.path = Path(path)
        super().__init__(f"Invalid record {path}: {detail}")


class InvalidNameError(SyncError, ValueError):
    """A display name leaves nothing usable as a directory or file name."""

    kind = ErrorKind.INVALID_NAME
    fatal = True

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Cannot derive a directory name from {name!r}")


class NameConflictError(SyncError, ValueError):
    """A sanitized name is already taken by an unrelated entity."""

    kind = ErrorKind.NAME_CONFLICT
    fatal = True

    def __init__(self, path: Path | str, existing: str | None = None) -> None:
        self.path = Path(path)
        msg = f"Path already holds a different entity: {path}"
        if existing:
            msg += f" (owned by {existing})"
        super().__init__(msg)


class RemoteUnavailableError(SyncError):
    """Network failure or a 5xx / unexpected response from the remote."""

    kind = ErrorKind.REMOTE_UNAVAILABLE


class RemoteNotFoundError(RemoteUnavailableError):
    """The remote answered 404 for an entity we expected to exist."""


class ImportFailedError(RemoteUnavailableError):
    """The remote rejected a DSL import (in either phase)."""

    fatal = True

    def __init__(self, app_id: str | None, detail: str | None = None) -> None:
        target = app_id or "new app"
        super().__init__(f"Import into {target} failed: {detail or 'unknown error'}")


class ConflictError(SyncError):
    """Remote drift detected at push time.  Never resolved automatically."""

    kind = ErrorKind.CONFLICT
    fatal = True

    def __init__(self, path: Path | str, local_watermark: str, remote_updated_at: str) -> None:
        self.path = Path(path)
        self.local_watermark = local_watermark
        self.remote_updated_at = remote_updated_at
        super().__init__(
            f"Remote has changes not pulled locally ({path}): "
            f"recorded {local_watermark or 'never'}, remote {remote_updated_at or 'unknown'}"
        )


class UnsupportedOperationError(SyncError):
    """The entity does not support the requested operation."""

    kind = ErrorKind.UNSUPPORTED_OPERATION
    fatal = True
