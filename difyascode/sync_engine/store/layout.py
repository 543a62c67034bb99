"""On-disk layout of the mirrored hierarchy.

Everything that knows a file name or a directory convention lives here::

    {root}/.gitignore
    {root}/{Platform}/.platform.yml
    {root}/{Platform}/{email}/.account.yml
    {root}/{Platform}/{email}/.secrets.yml
    {root}/{Platform}/{email}/{Workspace}/.workspace.yml
    {root}/{Platform}/{email}/{Workspace}/studio/{App}/app.yml
    {root}/{Platform}/{email}/{Workspace}/studio/{App}/.sync.yml
    {root}/{Platform}/{email}/{Workspace}/knowledge/knowledge.yml
    {root}/{Platform}/{email}/{Workspace}/knowledge/{Dataset}/.dataset.yml
    {root}/{Platform}/{email}/{Workspace}/knowledge/{Dataset}/.sync.yml
    {root}/{Platform}/{email}/{Workspace}/knowledge/{Dataset}/.documents.yml
    {root}/{Platform}/{email}/{Workspace}/{tools,plugins,models}/{kind}.yml
"""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import urlsplit

from difyascode.sync_engine.errors import InvalidNameError
from difyascode.sync_engine.models.enums import EntityKind, RegistryKind, ResourceFolder

PLATFORM_FILE = ".platform.yml"
ACCOUNT_FILE = ".account.yml"
SECRETS_FILE = ".secrets.yml"
WORKSPACE_FILE = ".workspace.yml"
DATASET_FILE = ".dataset.yml"
SYNC_FILE = ".sync.yml"
MANIFEST_FILE = ".documents.yml"
APP_CONTENT_FILE = "app.yml"
KEY_FILE = ".dify.key"
GITIGNORE_FILE = ".gitignore"

IGNORE_PATTERNS = (f"**/{SECRETS_FILE}", KEY_FILE)
"""Lines the root ``.gitignore`` must carry so credentials are never tracked."""

RECORD_FILES: dict[EntityKind, str] = {
    EntityKind.PLATFORM: PLATFORM_FILE,
    EntityKind.ACCOUNT: ACCOUNT_FILE,
    EntityKind.WORKSPACE: WORKSPACE_FILE,
    EntityKind.APP: SYNC_FILE,
    EntityKind.DATASET: DATASET_FILE,
}
"""Record that marks a directory as an entity of the given kind."""

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")

_URL_SUFFIXES = ("/apps", "/explore", "/datasets", "/tools", "/plugins", "/app/", "/console", "/v1")


def sanitize_name(name: str) -> str:
    """Turn a display name into a filesystem-safe directory name.

    Reserved characters become ``_`` and whitespace runs collapse to a single
    ``_``.  Leading dots are dropped, since hidden entries are never listed.
    Raises ``InvalidNameError`` if nothing usable remains.
    """
    safe = _WHITESPACE.sub("_", _UNSAFE_CHARS.sub("_", name.strip())).lstrip(".")
    if not safe:
        raise InvalidNameError(name)
    return safe


def id_suffixed(name: str, remote_id: str) -> str:
    """``<name>_<id prefix>``, the name used when *name* alone is taken."""
    return f"{name}_{remote_id[:8]}"


def directory_name(name: str, remote_id: str) -> str:
    """Directory name for a remote entity.

    Falls back to the id-suffixed form when *name* sanitizes to nothing
    (``..``, blanks), so a badly named remote entity still gets a home.
    """
    try:
        return sanitize_name(name)
    except InvalidNameError:
        return sanitize_name(id_suffixed(name, remote_id))


def normalize_platform_url(url: str) -> str:
    """Reduce any console / API / browse URL to its origin.

    ``https://dify.example.com/apps`` and ``https://dify.example.com/v1/``
    both become ``https://dify.example.com``.
    """
    raw = url.strip()
    parts = urlsplit(raw)
    if parts.scheme and parts.netloc:
        return f"{parts.scheme.lower()}://{parts.netloc.lower()}"

    # Scheme-less input: strip by known suffix instead.
    cleaned = raw.rstrip("/")
    for suffix in _URL_SUFFIXES:
        idx = cleaned.find(suffix)
        if idx > 0:
            cleaned = cleaned[:idx]
            break
    return cleaned.rstrip("/")


def session_key(url: str) -> str:
    """Key under which a gateway session is cached for a platform."""
    return url.strip().rstrip("/")


# -- Paths -------------------------------------------------------------------


def child_path(parent: Path, name: str) -> Path:
    return parent / sanitize_name(name)


def studio_dir(workspace: Path) -> Path:
    return workspace / ResourceFolder.STUDIO


def knowledge_dir(workspace: Path) -> Path:
    return workspace / ResourceFolder.KNOWLEDGE


def registry_file(workspace: Path, kind: RegistryKind) -> Path:
    return workspace / kind.folder / f"{kind.value}.yml"


def workspace_of(path: Path) -> Path:
    """Workspace directory owning an app or knowledge base directory."""
    return path.parent.parent


def document_file_name(name: str) -> str:
    """Local file name for a remote document, keeping its extension.

    Names without an extension get ``.txt`` so editors open them as text.
    """
    safe = sanitize_name(name)
    if not Path(safe).suffix:
        safe += ".txt"
    return safe


def is_hidden(path: Path) -> bool:
    return path.name.startswith(".")
