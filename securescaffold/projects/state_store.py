"""Dual persistence for project state.

The state file committed at the root of each project repository is the
source of truth. The local index only remembers where projects live; it is
written strictly after the state file and can be rebuilt from it.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import subprocess
import threading
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from dataclasses import replace
from typing import Any

from securescaffold.config import index_path
from securescaffold.errors import PersistenceFailed, ProjectNotFound
from securescaffold.projects.models import (
    InitializedFacet,
    InitializedProject,
    ProjectReferenceEntry,
    ProjectStatus,
    now_iso,
)
from securescaffold.repo.service import RepoService
from securescaffold.source.service import atomic_write_bytes

logger = logging.getLogger(__name__)

STATE_FILE = ".securescaffold.json"
SCHEMA_VERSION = 1
INDEX_VERSION = 1


def encode_project(project: InitializedProject) -> str:
    data = project.to_dict()
    data["schema_version"] = SCHEMA_VERSION
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def decode_project(text: str) -> InitializedProject:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("state file must contain a JSON object")
    version = int(data.pop("schema_version", SCHEMA_VERSION))
    if version > SCHEMA_VERSION:
        raise ValueError(f"unsupported state schema version {version}")
    return InitializedProject.from_dict(data)


@contextmanager
def _locked_file(path: str) -> Iterator[None]:
    """Hold an exclusive lock on a ``.lock`` sidecar of ``path``."""
    lock_path = path + ".lock"
    os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
    with open(lock_path, "a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class ProjectIndex:
    """Tool-local cache of known projects, keyed by identifier."""

    def __init__(self, path: str | None = None) -> None:
        self.path = path or index_path()
        self._mutex = threading.Lock()

    def _read(self) -> list[ProjectReferenceEntry]:
        if not os.path.isfile(self.path):
            return []
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
            return [ProjectReferenceEntry.from_dict(e) for e in data.get("projects") or []]
        except (OSError, ValueError, KeyError, TypeError, AttributeError):
            logger.warning("Ignoring unreadable project index at %s", self.path, exc_info=True)
            return []

    def _write(self, entries: list[ProjectReferenceEntry]) -> None:
        body: dict[str, Any] = {
            "version": INDEX_VERSION,
            "projects": [e.to_dict() for e in sorted(entries, key=lambda e: e.identifier)],
        }
        text = json.dumps(body, indent=2, sort_keys=True) + "\n"
        atomic_write_bytes(self.path, text.encode("utf-8"))

    def entries(self) -> list[ProjectReferenceEntry]:
        return sorted(self._read(), key=lambda e: e.identifier)

    def get(self, identifier: str) -> ProjectReferenceEntry | None:
        return next((e for e in self._read() if e.identifier == identifier), None)

    def upsert(self, entry: ProjectReferenceEntry) -> None:
        with self._mutex, _locked_file(self.path):
            entries = [e for e in self._read() if e.identifier != entry.identifier]
            entries.append(entry)
            self._write(entries)
        logger.debug("Indexed %s -> %s", entry.identifier, entry.local_path)

    def remove(self, identifier: str) -> bool:
        with self._mutex, _locked_file(self.path):
            entries = self._read()
            kept = [e for e in entries if e.identifier != identifier]
            if len(kept) == len(entries):
                return False
            self._write(kept)
        return True


class StateStore:
    def __init__(
        self,
        *,
        repo: RepoService | None = None,
        index: ProjectIndex | None = None,
    ) -> None:
        self._repo = repo or RepoService()
        self._source = self._repo.source
        self.index = index or ProjectIndex()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, identifier: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(identifier, threading.Lock())

    def _entry(self, project: InitializedProject, local_path: str | None) -> ProjectReferenceEntry:
        return ProjectReferenceEntry(
            identifier=project.identifier,
            repo_url=project.repo.html_url,
            local_path=local_path,
            status=project.status,
            updated_at=project.updated_at,
        )

    def ensure_working_copy(self, project: InitializedProject) -> str:
        wc = self._source.working_copy_path(project.identifier)
        if not os.path.isdir(os.path.join(wc, ".git")):
            wc = self._repo.clone(project.repo)
        return wc

    def put(
        self,
        project: InitializedProject,
        paths: list[str] | tuple[str, ...] = (),
        *,
        message: str | None = None,
    ) -> InitializedProject:
        """Commit the state file (plus ``paths``) and then refresh the index.

        A failure before the commit lands leaves the previous state file in
        place and the index untouched.
        """
        with self._lock(project.identifier):
            wc = self.ensure_working_copy(project)
            self._write_canonical(
                project,
                wc,
                list(paths),
                message or f"Update securescaffold state for {project.identifier}",
            )
            self.index.upsert(self._entry(project, wc))
        logger.info("Persisted %s (%s)", project.identifier, project.status.value)
        return project

    def _write_canonical(
        self, project: InitializedProject, wc: str, paths: list[str], message: str
    ) -> None:
        state_path = os.path.join(wc, STATE_FILE)
        previous: bytes | None = None
        with suppress(FileNotFoundError):
            with open(state_path, "rb") as fh:
                previous = fh.read()

        committed = False
        try:
            atomic_write_bytes(state_path, encode_project(project).encode("utf-8"))
            committed = self._source.commit(wc, [STATE_FILE, *paths], message) is not None
            if committed:
                self._source.push(wc, project.repo.default_branch)
        except (subprocess.SubprocessError, OSError, RuntimeError) as exc:
            self._rollback(wc, state_path, previous, paths, committed=committed)
            raise PersistenceFailed(
                f"could not persist state for {project.identifier}: {exc}"
            ) from exc

    def _rollback(
        self,
        wc: str,
        state_path: str,
        previous: bytes | None,
        paths: list[str],
        *,
        committed: bool,
    ) -> None:
        try:
            if committed:
                self._source.undo_last_commit(wc)
            for rel in (STATE_FILE, *paths):
                self._source.unstage(wc, rel)
            if previous is None:
                with suppress(FileNotFoundError):
                    os.unlink(state_path)
            else:
                atomic_write_bytes(state_path, previous)
        except (subprocess.SubprocessError, OSError):
            logger.exception("Rollback of %s left the working copy dirty", state_path)

    def _load_local(self, wc: str) -> InitializedProject | None:
        state_path = os.path.join(wc, STATE_FILE)
        if not os.path.isfile(state_path):
            return None
        with open(state_path, encoding="utf-8") as fh:
            text = fh.read()
        try:
            return decode_project(text)
        except (ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailed(f"state file {state_path} is unreadable: {exc}") from exc

    def get(self, identifier: str) -> InitializedProject:
        """Load a project, preferring local state and falling back to the remote."""
        entry = self.index.get(identifier)
        if entry is not None and entry.local_path:
            project = self._load_local(entry.local_path)
            if project is not None:
                return project

        wc = self._source.working_copy_path(identifier)
        project = self._load_local(wc)
        if project is not None:
            self.index.upsert(self._entry(project, wc))
            return project

        text = self._repo.fetch_file_content(identifier, STATE_FILE)
        if text is None:
            raise ProjectNotFound(f"project not found: {identifier}")
        try:
            project = decode_project(text)
        except (ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailed(f"remote state of {identifier} is unreadable: {exc}") from exc
        self.index.upsert(self._entry(project, None))
        logger.info("Recovered %s from its remote state file", identifier)
        return project

    def list(self) -> list[ProjectReferenceEntry]:
        return self.index.entries()

    def update(
        self,
        identifier: str,
        *,
        status: ProjectStatus | None = None,
        facets: list[InitializedFacet] | None = None,
        paths: list[str] | tuple[str, ...] = (),
        message: str | None = None,
    ) -> InitializedProject:
        project = self.get(identifier)
        if facets:
            project = project.with_facets(facets)
        if status is not None:
            project = replace(project, status=status)
        project = replace(project, updated_at=now_iso())
        return self.put(project, paths, message=message)

    def archive(self, identifier: str) -> InitializedProject:
        project = self.get(identifier)
        if project.status == ProjectStatus.ARCHIVED:
            return project
        archived = replace(project, status=ProjectStatus.ARCHIVED)
        return self.put(archived, message=f"Archive {identifier}")

    def prune(self, identifier: str) -> bool:
        """Forget a project locally; its repository state is untouched."""
        removed = self.index.remove(identifier)
        if removed:
            logger.info("Pruned %s from the project index", identifier)
        return removed
