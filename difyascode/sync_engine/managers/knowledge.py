"""Knowledge base document sync.

Pulling a knowledge base stitches every remote document back into one local
text file and records it in the dataset's ``.documents.yml`` manifest.  Two
rules protect local work:

- **local-first**: a document file that already exists locally is never
  overwritten by a pull;
- **local-only preservation**: documents created offline (``is_local``) stay
  in the manifest until they are pushed, even though the remote has never
  heard of them.

Authoring (create / push / delete of single documents) lives here too.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from loguru import logger

from difyascode.sync_engine.errors import (
    AuthenticationError,
    InvalidNameError,
    NameConflictError,
    NotFoundLocallyError,
    SyncError,
)
from difyascode.sync_engine.gateway.base import RemoteGateway
from difyascode.sync_engine.knowledge.merge import merge_manifest, stitch_segments
from difyascode.sync_engine.managers.hierarchy import upsert_by_id
from difyascode.sync_engine.models.entities import (
    LOCAL_ID_PREFIX,
    DatasetConfig,
    DatasetNode,
    DocumentEntry,
    DocumentManifest,
    SyncMetadata,
    is_placeholder_id,
)
from difyascode.sync_engine.models.enums import EntityKind
from difyascode.sync_engine.models.remote import RemoteDataset, RemoteDocument
from difyascode.sync_engine.models.report import SyncReport
from difyascode.sync_engine.settings import DifySettings
from difyascode.sync_engine.status import compute_hash
from difyascode.sync_engine.store import layout
from difyascode.sync_engine.store.base import HierarchyStore


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex[:12]}"


class KnowledgeManager:
    """Pull and author knowledge base documents through the hierarchy store."""

    def __init__(self, store: HierarchyStore, settings: DifySettings) -> None:
        self._store = store
        self._overlap = settings.segment_overlap
        self._min_overlap = settings.min_segment_overlap

    # -- Pull ------------------------------------------------------------------

    async def pull_dataset(self, gateway: RemoteGateway, workspace_path: Path, dataset_id: str) -> SyncReport:
        """Pull one knowledge base in full.

        The gateway must already be switched to the owning workspace.  One
        failing document is recorded and its siblings still sync.
        """
        report = SyncReport()
        remote = await gateway.get_dataset(dataset_id)
        dataset_path = await self._place_dataset(workspace_path, remote, report)

        existing = await self._store.read_manifest(dataset_path)
        fetched: list[DocumentEntry] = []
        taken = {d.file_name for d in existing.documents}

        documents = await gateway.list_documents(dataset_id)
        for document in documents:
            previous = existing.find(document.id)
            file_name = previous.file_name if previous else _unique_file_name(document, taken)
            taken.add(file_name)
            try:
                entry = await self._pull_document(
                    gateway, dataset_path, remote.id, document, file_name, previous, report
                )
            except AuthenticationError:
                raise
            except SyncError as exc:
                logger.warning("Failed to pull document {} of {}: {}", document.name, remote.name, exc)
                report.fail("document", document.name, exc)
                if previous:
                    fetched.append(previous)
            else:
                fetched.append(entry)

        converted = await self._retire_removed(dataset_path, existing, {d.id for d in documents}, report)

        carried = existing.model_copy(update={"documents": [*existing.documents, *converted]})
        manifest = merge_manifest(carried, fetched)
        if manifest.documents != existing.documents:
            await self._store.write_manifest(dataset_path, manifest)

        metadata = SyncMetadata(
            remote_id=remote.id,
            last_synced_at=datetime.now(UTC),
            remote_updated_at=remote.updated_at,
            local_hash=_manifest_hash(manifest),
        )
        current = await self._store.read_sync_metadata(dataset_path)
        if (
            current is None
            or current.remote_updated_at != metadata.remote_updated_at
            or current.local_hash != metadata.local_hash
        ):
            await self._store.write_sync_metadata(dataset_path, metadata)

        logger.info("Pulled knowledge base {}: {}", remote.name, report.summary())
        return report

    async def _place_dataset(self, workspace_path: Path, remote: RemoteDataset, report: SyncReport) -> Path:
        record = DatasetConfig(
            id=remote.id,
            name=remote.name,
            description=remote.description,
            document_count=remote.document_count,
            word_count=remote.word_count,
        )
        local = await self.find_dataset(workspace_path, remote.id)
        path, written = await upsert_by_id(self._store, workspace_path, record, local)
        if written:
            (report.created if local is None else report.updated).append(path)
        return path

    async def _pull_document(
        self,
        gateway: RemoteGateway,
        dataset_path: Path,
        dataset_id: str,
        document: RemoteDocument,
        file_name: str,
        previous: DocumentEntry | None,
        report: SyncReport,
    ) -> DocumentEntry:
        segments = await gateway.list_segments(dataset_id, document.id)
        text = stitch_segments(segments, self._overlap, min_overlap=self._min_overlap)
        remote_hash = compute_hash(text)
        path = dataset_path / file_name

        entry = DocumentEntry(
            remote_id=document.id,
            name=document.name,
            file_name=file_name,
            content_hash=remote_hash,
            remote_updated_at=document.updated_at,
        )

        if await self._store.document_exists(dataset_path, file_name):
            # Local-first: keep the file; keep the hash it was last synced at
            # so edits still show up as local-modified.
            if previous is not None:
                entry.content_hash = previous.content_hash
            local_hash = compute_hash(await self._store.read_document(dataset_path, file_name))
            if local_hash == remote_hash:
                report.unchanged.append(path)
            else:
                logger.debug("Keeping local {} (differs from remote)", path)
                report.skipped.append(path)
            return entry

        await self._store.write_document(dataset_path, file_name, text)
        report.created.append(path)
        return entry

    async def _retire_removed(
        self,
        dataset_path: Path,
        existing: DocumentManifest,
        remote_ids: set[str],
        report: SyncReport,
    ) -> list[DocumentEntry]:
        """Handle documents deleted remotely.

        Unmodified copies are deleted.  Locally edited ones become local-only
        entries so the edit can be pushed as a new document.
        """
        converted = []
        for entry in existing.documents:
            if entry.is_local or entry.remote_id in remote_ids:
                continue
            path = dataset_path / entry.file_name
            try:
                text = await self._store.read_document(dataset_path, entry.file_name)
            except NotFoundLocallyError:
                report.deleted.append(path)
                continue
            if compute_hash(text) != entry.content_hash:
                logger.warning("{} was deleted remotely but edited locally; keeping it as local-only", path)
                converted.append(entry.model_copy(update={"remote_id": new_local_id(), "is_local": True}))
                report.skipped.append(path)
                continue
            await self._store.delete_document(dataset_path, entry.file_name)
            report.deleted.append(path)
        return converted

    async def find_dataset(self, workspace_path: Path, dataset_id: str) -> DatasetNode | None:
        for node in await self._store.list(workspace_path, EntityKind.DATASET):
            if node.id == dataset_id:  # type: ignore[union-attr]
                return node  # type: ignore[return-value]
        return None

    # -- Authoring -------------------------------------------------------------

    async def create_local_document(self, dataset_path: Path, name: str, text: str = "") -> DocumentEntry:
        """Create a document offline.  It carries a placeholder id until pushed."""
        await self._store.get(dataset_path, EntityKind.DATASET)
        file_name = layout.document_file_name(name)
        if await self._store.document_exists(dataset_path, file_name):
            raise NameConflictError(dataset_path / file_name)

        entry = DocumentEntry(remote_id=new_local_id(), name=name, file_name=file_name, is_local=True)
        manifest = await self._store.read_manifest(dataset_path)
        if manifest.find_by_file(file_name) is not None:
            raise NameConflictError(dataset_path / file_name)

        await self._store.write_document(dataset_path, file_name, text)
        manifest.documents.append(entry)
        await self._store.write_manifest(dataset_path, manifest)
        logger.info("Created local document {}", dataset_path / file_name)
        return entry

    async def push_document(self, gateway: RemoteGateway, dataset_path: Path, file_name: str) -> DocumentEntry:
        """Upload one document, creating it remotely if it has no real id yet.

        Strict: the manifest is only rewritten after the remote accepted the
        content.
        """
        dataset: DatasetNode = await self._store.get(dataset_path, EntityKind.DATASET)  # type: ignore[assignment]
        text = await self._store.read_document(dataset_path, file_name)
        manifest = await self._store.read_manifest(dataset_path)
        entry = manifest.find_by_file(file_name)
        if entry is None:
            name = PurePosixPath(file_name).name
            entry = DocumentEntry(remote_id=new_local_id(), name=name, file_name=file_name, is_local=True)
            manifest.documents.append(entry)

        if entry.is_local or is_placeholder_id(entry.remote_id):
            created = await gateway.create_document(dataset.id, entry.name, text)
            logger.info("Created document {} as {}", entry.name, created.id)
            entry.remote_id = created.id
            entry.is_local = False
        else:
            await gateway.update_document(dataset.id, entry.remote_id, entry.name, text)

        entry.content_hash = compute_hash(text)
        await self._store.write_manifest(dataset_path, manifest)
        return entry

    async def delete_document(self, gateway: RemoteGateway, dataset_path: Path, file_name: str) -> None:
        """Delete a document remotely (unless local-only) and locally."""
        dataset: DatasetNode = await self._store.get(dataset_path, EntityKind.DATASET)  # type: ignore[assignment]
        manifest = await self._store.read_manifest(dataset_path)
        entry = manifest.find_by_file(file_name)
        if entry is None:
            raise NotFoundLocallyError(dataset_path / file_name, "document entry")

        if not entry.is_local and not is_placeholder_id(entry.remote_id):
            await gateway.delete_document(dataset.id, entry.remote_id)

        manifest.documents = [d for d in manifest.documents if d.file_name != file_name]
        await self._store.write_manifest(dataset_path, manifest)
        await self._store.delete_document(dataset_path, file_name)
        logger.info("Deleted document {}", dataset_path / file_name)


def _unique_file_name(document: RemoteDocument, taken: set[str]) -> str:
    try:
        file_name = layout.document_file_name(document.name)
    except InvalidNameError:
        file_name = layout.document_file_name(layout.id_suffixed(document.name, document.id))
    if file_name not in taken:
        return file_name
    stem = PurePosixPath(file_name)
    return f"{stem.stem}_{document.id[:8]}{stem.suffix}"


def _manifest_hash(manifest: DocumentManifest) -> str:
    lines = sorted(f"{d.file_name}:{d.content_hash}" for d in manifest.documents)
    return compute_hash("\n".join(lines))
