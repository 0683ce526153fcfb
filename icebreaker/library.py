"""The model library: merged catalog of local files and remote API models.

A ``Library`` is an immutable snapshot built wholesale by :meth:`Library.scan`
from two sources:

* the library directory, laid out as ``<root>/<author>/<model>/<file>.gguf``;
* the bookmark file, holding configured providers (``api_src``), installed
  remote API models (``apis``) and the user's bookmarks.

Every change (bookmarking, installing an API model, re-scanning) produces a
new snapshot.  :class:`LibraryStore` holds the current one and swaps it
atomically, so concurrent readers see either the old or the new catalog and
never a half-applied edit.

Local files are never written to the bookmark file; they are re-discovered
by scanning.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

import httpx

from icebreaker import providers
from icebreaker.errors import DecodeError, IcebreakerError
from icebreaker.models import (
    WEIGHT_EXTENSION,
    APIAccess,
    APIType,
    EndpointId,
    File,
    FileAndAPI,
    FileOrAPI,
    Id,
    ModelOnline,
    StatusCheck,
)
from icebreaker.settings import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Bookmark file document
# ---------------------------------------------------------------------------


def encode_bookmarks(library: "Library") -> dict[str, Any]:
    """Build the bookmark file document of ``library``.

    Only API-backed entries are written; keys are sorted so that saving an
    unchanged library produces identical bytes.
    """
    apis = {
        endpoint_id.key(): entry.to_dict()
        for endpoint_id, entry in library.files.items()
        if isinstance(entry, ModelOnline)
    }
    return {
        "api_src": {
            kind.value: access.to_dict()
            for kind, access in sorted(library.api_src.items(), key=lambda kv: kv[0].value)
        },
        "apis": dict(sorted(apis.items())),
        "bookmarks": [endpoint_id.to_json() for endpoint_id in library.bookmarks],
    }


def decode_bookmarks(
    data: Any,
) -> tuple[dict[APIType, APIAccess], dict[EndpointId, ModelOnline], list[EndpointId]]:
    """Decode a bookmark file document.

    Raises
    ------
    DecodeError
        If the document does not have the expected shape.
    """
    if not isinstance(data, dict):
        raise DecodeError("bookmark file must contain an object")

    api_src: dict[APIType, APIAccess] = {}
    raw_src = data.get("api_src") or {}
    if not isinstance(raw_src, dict):
        raise DecodeError("api_src must be an object")
    for raw_kind, raw_access in raw_src.items():
        kind = APIType.parse(raw_kind)
        access = APIAccess.from_dict(raw_access)
        if access.kind is not kind:
            logger.warning("api_src entry %s describes %s, keeping it under %s",
                           raw_kind, access.kind.value, access.kind.value)
        api_src[access.kind] = access

    apis: dict[EndpointId, ModelOnline] = {}
    raw_apis = data.get("apis") or {}
    if not isinstance(raw_apis, dict):
        raise DecodeError("apis must be an object")
    for raw_key, raw_model in raw_apis.items():
        model = ModelOnline.from_dict(raw_model)
        if _key_of(raw_key) != model.endpoint_id:
            logger.warning("bookmark entry %s describes %s, re-keying",
                           raw_key, model.endpoint_id.key())
        apis[model.endpoint_id] = model

    raw_bookmarks = data.get("bookmarks") or []
    if not isinstance(raw_bookmarks, list):
        raise DecodeError("bookmarks must be a list")
    bookmarks = [EndpointId.from_json(raw) for raw in raw_bookmarks]

    return api_src, apis, bookmarks


def _key_of(raw_key: str) -> Optional[EndpointId]:
    try:
        return EndpointId.from_key(raw_key)
    except DecodeError:
        return None


def _read_bookmarks(
    path: Path,
) -> tuple[dict[APIType, APIAccess], dict[EndpointId, ModelOnline], list[EndpointId]]:
    """Read the bookmark file; a missing or malformed file means "empty"."""
    if not path.exists():
        logger.info("no bookmark file at %s", path)
        return {}, {}, []
    logger.info("reading %s", path)
    try:
        return decode_bookmarks(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, DecodeError) as exc:
        logger.warning("ignoring unreadable bookmark file %s: %s", path, exc)
        return {}, {}, []


# ---------------------------------------------------------------------------
# Directory scan
# ---------------------------------------------------------------------------


def _sorted_entries(path: str) -> list[os.DirEntry[str]]:
    with os.scandir(path) as it:
        return sorted(it, key=lambda entry: entry.name)


def _scan_directory(directory: Path) -> dict[EndpointId, File]:
    """Walk ``author/model/file`` below ``directory``.

    Exactly three levels are visited.  A model directory holding several
    weight files is represented by the last one in name order.
    """
    directory.mkdir(parents=True, exist_ok=True)
    files: dict[EndpointId, File] = {}

    for author in _sorted_entries(str(directory)):
        if not author.is_dir():
            continue
        for model in _sorted_entries(author.path):
            if not model.is_dir():
                continue
            for entry in _sorted_entries(model.path):
                if not entry.is_file() or Path(entry.name).suffix != WEIGHT_EXTENSION:
                    continue
                id = Id(f"{author.name}/{model.name}")
                endpoint_id = EndpointId.local(id)
                if endpoint_id in files:
                    logger.debug("%s: %s replaces %s", id, entry.name, files[endpoint_id].name)
                files[endpoint_id] = File(
                    model=id, name=entry.name, size=entry.stat().st_size
                )

    return files


# ---------------------------------------------------------------------------
# Library snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Library:
    """Immutable catalog snapshot.

    Parameters
    ----------
    directory:
        Library root.
    api_src:
        Configured providers, one credential set per provider type.
    files:
        Merged catalog.  Each key equals its entry's ``endpoint_id``.
    bookmarks:
        Bookmarked endpoints, without duplicates.  A bookmark does not need
        a catalog entry.
    """

    directory: Path
    api_src: Mapping[APIType, APIAccess] = field(default_factory=dict)
    files: Mapping[EndpointId, FileOrAPI] = field(default_factory=dict)
    bookmarks: tuple[EndpointId, ...] = ()

    def __post_init__(self) -> None:
        for kind, access in self.api_src.items():
            if access.kind is not kind:
                raise ValueError(f"api_src key {kind.value} holds {access.kind.value} access")
        for endpoint_id, entry in self.files.items():
            if entry.endpoint_id != endpoint_id:
                raise ValueError(f"catalog key {endpoint_id.key()} holds {entry.endpoint_id.key()}")
        object.__setattr__(self, "api_src", MappingProxyType(dict(self.api_src)))
        object.__setattr__(self, "files", MappingProxyType(dict(self.files)))
        object.__setattr__(self, "bookmarks", tuple(dict.fromkeys(self.bookmarks)))

    # ------------------------------------------------------------------
    # Scan and persistence
    # ------------------------------------------------------------------

    @classmethod
    async def scan(cls, settings: Settings) -> "Library":
        """Rebuild the catalog from the library directory and bookmark file.

        Errors reading the library directory propagate: a partial scan
        followed by a bookmark save would lose entries.  The bookmark file
        itself is read leniently and never written here.
        """
        directory = Path(settings.library)
        local = await asyncio.to_thread(_scan_directory, directory)
        api_src, apis, bookmarks = await asyncio.to_thread(
            _read_bookmarks, settings.bookmarks()
        )

        files: dict[EndpointId, FileOrAPI] = dict(apis)
        files.update(local)

        logger.info(
            "scanned %s: %d local models, %d API models, %d bookmarks",
            directory,
            len(local),
            len(apis),
            len(bookmarks),
        )
        return cls(directory=directory, api_src=api_src, files=files, bookmarks=tuple(bookmarks))

    async def save_bookmarks(self, settings: Settings) -> "Library":
        """Overwrite the bookmark file with this snapshot's API state."""
        path = settings.bookmarks()
        text = json.dumps(encode_bookmarks(self), indent=2, ensure_ascii=False) + "\n"

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")

        logger.info("writing bookmarks to %s", path)
        await asyncio.to_thread(_write)
        return self

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, endpoint_id: EndpointId) -> Optional[FileOrAPI]:
        return self.files.get(endpoint_id)

    def local_files(self) -> list[File]:
        return [entry for entry in self.files.values() if isinstance(entry, File)]

    def api_models(self) -> list[ModelOnline]:
        return [entry for entry in self.files.values() if isinstance(entry, ModelOnline)]

    def is_bookmarked(self, endpoint_id: EndpointId) -> bool:
        return endpoint_id in self.bookmarks

    def bookmarked_entries(self) -> list[tuple[EndpointId, Optional[FileOrAPI]]]:
        """Bookmarks in order, each with its catalog entry if there is one."""
        return [(endpoint_id, self.files.get(endpoint_id)) for endpoint_id in self.bookmarks]

    # ------------------------------------------------------------------
    # Copy-on-write edits
    # ------------------------------------------------------------------

    def with_bookmark(self, endpoint_id: EndpointId) -> "Library":
        if endpoint_id in self.bookmarks:
            return self
        return dataclasses.replace(self, bookmarks=self.bookmarks + (endpoint_id,))

    def without_bookmark(self, endpoint_id: EndpointId) -> "Library":
        if endpoint_id not in self.bookmarks:
            return self
        return dataclasses.replace(
            self, bookmarks=tuple(b for b in self.bookmarks if b != endpoint_id)
        )

    def toggle_bookmark(self, endpoint_id: EndpointId, add: bool) -> "Library":
        return self.with_bookmark(endpoint_id) if add else self.without_bookmark(endpoint_id)

    def with_api_models(self, models: Iterable[ModelOnline]) -> "Library":
        files = dict(self.files)
        for model in models:
            files[model.endpoint_id] = model
        return dataclasses.replace(self, files=files)

    def with_api_model(self, model: ModelOnline) -> "Library":
        return self.with_api_models([model])

    def with_api_source(self, access: APIAccess) -> "Library":
        api_src = dict(self.api_src)
        api_src[access.kind] = access
        return dataclasses.replace(self, api_src=api_src)

    def without_api_source(self, kind: APIType) -> "Library":
        api_src = {k: v for k, v in self.api_src.items() if k is not kind}
        return dataclasses.replace(self, api_src=api_src)

    # ------------------------------------------------------------------
    # Status probes
    # ------------------------------------------------------------------

    async def status_check(
        self,
        endpoint_id: EndpointId,
        client: Optional[httpx.AsyncClient] = None,
    ) -> Optional[StatusCheck]:
        """Probe the health of an API model and record it on its status cell.

        Returns the recorded state, or ``None`` when the entry is not an
        API model or another probe of it is already running.  Probe
        failures mark the model ``Down`` instead of raising.
        """
        entry = self.files.get(endpoint_id)
        if not isinstance(entry, ModelOnline):
            return None
        if not entry.status.begin_check():
            logger.debug("status check of %s already running", endpoint_id)
            return None
        try:
            up = await providers.probe(entry, client=client)
        except IcebreakerError as exc:
            logger.warning("status check of %s failed: %s", endpoint_id, exc)
            up = False
        except BaseException:
            entry.status.finish(False)
            raise
        return entry.status.finish(up)


async def check_statuses(
    library: Library,
    endpoint_ids: Iterable[EndpointId],
    client: Optional[httpx.AsyncClient] = None,
) -> dict[EndpointId, Optional[StatusCheck]]:
    """Probe several endpoints concurrently, each at most once."""
    unique = list(dict.fromkeys(endpoint_ids))
    results = await asyncio.gather(
        *(library.status_check(endpoint_id, client=client) for endpoint_id in unique)
    )
    return dict(zip(unique, results))


# ---------------------------------------------------------------------------
# Installed API descriptors
# ---------------------------------------------------------------------------


def _read_descriptors(directory: Path) -> list[FileAndAPI]:
    directory.mkdir(parents=True, exist_ok=True)
    installed: list[FileAndAPI] = []
    for path in sorted(directory.glob("*.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodeError(f"malformed descriptor {path}: {exc}") from exc
        installed.append(FileAndAPI(api=ModelOnline.from_dict(data)))
    return installed


async def list_installed(directory: Path) -> list[FileAndAPI]:
    """Load every API model descriptor stored flat in the library root."""
    return await asyncio.to_thread(_read_descriptors, Path(directory))


# ---------------------------------------------------------------------------
# Snapshot holder
# ---------------------------------------------------------------------------


class LibraryStore:
    """Holds the current :class:`Library` snapshot.

    Thread-safe: the reference swap is serialised via an internal lock;
    readers keep whatever snapshot they fetched for as long as they need.
    """

    def __init__(self, library: Library) -> None:
        self._library = library
        self._lock = threading.Lock()

    def snapshot(self) -> Library:
        with self._lock:
            return self._library

    def replace(self, library: Library) -> Library:
        with self._lock:
            self._library = library
        return library

    def update(self, fn: Callable[[Library], Library]) -> Library:
        """Apply ``fn`` to the current snapshot and install the result."""
        with self._lock:
            self._library = fn(self._library)
            return self._library

    async def rescan(self, settings: Settings) -> Library:
        return self.replace(await Library.scan(settings))

    async def save(self, settings: Settings) -> Library:
        return await self.snapshot().save_bookmarks(settings)

    async def update_and_save(
        self, fn: Callable[[Library], Library], settings: Settings
    ) -> Library:
        """Apply an edit and persist the resulting snapshot."""
        return await self.update(fn).save_bookmarks(settings)
