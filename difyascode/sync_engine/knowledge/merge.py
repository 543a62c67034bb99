"""Rebuild documents from remote segments.

The remote stores a document as ordered chunks that overlap by roughly a
fixed number of characters.  ``stitch_segments`` glues them back together by
matching the head of each chunk against the tail of the text built so far.

This is a heuristic.  The tail search is bounded to ``window`` characters
(``2 * overlap`` by default) and only matches of at least ``min_overlap``
characters count, so a chunk that merely starts with the same letter as the
previous one ends is not trimmed.  Text with phrases repeated within the
window can still be over-trimmed; the output is readable text, not a
guaranteed byte-exact reconstruction of the original upload.

Pure functions, no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from difyascode.sync_engine.models.entities import DocumentEntry, DocumentManifest
from difyascode.sync_engine.models.remote import RemoteSegment

PARAGRAPH_BREAK = "\n\n"


def stitch_segments(
    segments: Sequence[RemoteSegment],
    overlap: int,
    window: int | None = None,
    min_overlap: int = 3,
) -> str:
    """Merge *segments* into one text, dropping the overlap between neighbours.

    Segments are ordered by ``position``.  When no overlap is found the next
    segment is appended after a paragraph break.  Empty segments are skipped.
    """
    ordered = sorted((s for s in segments if s.content), key=lambda s: s.position)
    if not ordered:
        return ""

    if window is None:
        window = 2 * overlap
    min_overlap = max(min_overlap, 1)

    text = ordered[0].content
    for segment in ordered[1:]:
        content = segment.content
        tail = text[-window:] if window > 0 else ""
        matched = _longest_overlap(tail, content, min_overlap)
        text += content[matched:] if matched else PARAGRAPH_BREAK + content
    return text


def _longest_overlap(tail: str, head: str, min_overlap: int) -> int:
    """Length of the longest prefix of *head* that is a suffix of *tail*."""
    for size in range(min(len(tail), len(head)), min_overlap - 1, -1):
        if tail.endswith(head[:size]):
            return size
    return 0


def merge_manifest(
    existing: DocumentManifest,
    fetched: Iterable[DocumentEntry],
    now: datetime | None = None,
) -> DocumentManifest:
    """Combine a freshly fetched document list with the local manifest.

    Fetched entries win for every remote id they carry.  Local-only entries
    (``is_local``) that the remote does not know about are kept: they have
    simply not been pushed yet.
    """
    documents = list(fetched)
    remote_ids = {d.remote_id for d in documents}
    file_names = {d.file_name for d in documents}
    for entry in existing.documents:
        if entry.is_local and entry.remote_id not in remote_ids and entry.file_name not in file_names:
            documents.append(entry)
    return DocumentManifest(last_synced_at=now or datetime.now(UTC), documents=documents)
