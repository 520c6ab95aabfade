"""Project creation state machine and the operations built on top of it.

``create`` walks::

    requested -> repo_creating -> ecosystem_initializing -> applying_facets
      -> publishing -> aggregating -> persisted -> complete | partially_failed

and stops at ``failed`` when the repository, its working copy, the
ecosystem bootstrap or persistence fails. Individual facet failures never
stop the walk; they are recorded inline.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from securescaffold.ecosystem.service import EcosystemService
from securescaffold.errors import FacetNotFound, PersistenceFailed, ScaffoldError, WorkingCopyFailed
from securescaffold.facets.catalog import FacetDescriptor, descriptor, parse_kinds, resolve_kinds
from securescaffold.facets.service import FacetContext, FacetService
from securescaffold.outputs.service import OutputService
from securescaffold.projects.models import (
    EcosystemFacet,
    FacetKind,
    FailedFacet,
    InitializedFacet,
    InitializedProject,
    ProjectOutputReference,
    ProjectParams,
    ProjectReferenceEntry,
    ProjectStatus,
    SourceBundleFacet,
    derive_status,
    now_iso,
)
from securescaffold.projects.state_store import StateStore
from securescaffold.repo.service import RepoService

logger = logging.getLogger(__name__)

INITIAL_COMMIT_MESSAGE = "Initialize secure project scaffold"


class CreationState(str, Enum):
    REQUESTED = "requested"
    REPO_CREATING = "repo_creating"
    ECOSYSTEM_INITIALIZING = "ecosystem_initializing"
    APPLYING_FACETS = "applying_facets"
    PUBLISHING = "publishing"
    AGGREGATING = "aggregating"
    PERSISTED = "persisted"
    COMPLETE = "complete"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


@dataclass(frozen=True)
class CreationResult:
    project: InitializedProject
    state_trail: tuple[CreationState, ...]
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project.to_dict(),
            "state_trail": [s.value for s in self.state_trail],
            "warnings": list(self.warnings),
        }


def _split_by_category(kinds: list[FacetKind]) -> tuple[list[FacetKind], list[FacetKind]]:
    files = [k for k in kinds if descriptor(k).category == "source_bundle"]
    api = [k for k in kinds if descriptor(k).category == "api_bundle"]
    return files, api


def _written_paths(records: list[InitializedFacet]) -> list[str]:
    paths: list[str] = []
    for rec in records:
        if isinstance(rec, EcosystemFacet):
            # Directory-generating tools (maven) get their whole tree committed.
            paths.extend([rec.root] if rec.root not in ("", ".") else rec.paths)
        elif isinstance(rec, SourceBundleFacet):
            paths.extend(rec.paths)
    return paths


class ProjectEngine:
    def __init__(
        self,
        *,
        repo: RepoService | None = None,
        ecosystem: EcosystemService | None = None,
        facets: FacetService | None = None,
        store: StateStore | None = None,
        outputs: OutputService | None = None,
    ) -> None:
        self._repo = repo or RepoService()
        self._source = self._repo.source
        self._ecosystem = ecosystem or EcosystemService(source=self._source)
        self._facets = facets or FacetService(
            source=self._source, ecosystem=self._ecosystem, client=self._repo.client
        )
        self._store = store or StateStore(repo=self._repo)
        self._outputs = outputs or OutputService(client=self._repo.client)

    @property
    def store(self) -> StateStore:
        return self._store

    def _advance(
        self, trail: list[CreationState], state: CreationState, identifier: str
    ) -> None:
        trail.append(state)
        logger.info("%s: %s", identifier, state.value)

    def create(self, params: ProjectParams, facets: list[str] | None = None) -> CreationResult:
        """Create, scaffold and persist a new project.

        ``facets`` names the kinds to apply after the ecosystem bootstrap;
        ``None`` applies the defaults for the language. Unknown kinds raise
        ``ValueError`` before anything is created.
        """
        kinds = resolve_kinds(facets, params.language)
        file_kinds, api_kinds = _split_by_category(kinds)
        ident = params.identifier
        trail: list[CreationState] = [CreationState.REQUESTED]
        logger.info("%s: %s", ident, CreationState.REQUESTED.value)

        try:
            self._advance(trail, CreationState.REPO_CREATING, ident)
            repo = self._repo.create(params)
            try:
                wc = self._repo.clone(repo)
            except WorkingCopyFailed as exc:
                logger.error("%s", exc.advice)
                raise

            self._advance(trail, CreationState.ECOSYSTEM_INITIALIZING, ident)
            eco = self._ecosystem.initialize(params, wc)

            self._advance(trail, CreationState.APPLYING_FACETS, ident)
            ctx = FacetContext(working_copy=wc, params=params, repo=repo, ecosystem=eco)
            records: list[InitializedFacet] = [eco]
            records += self._facets.initialize_all(
                file_kinds, replace(ctx, prior_facets=tuple(records))
            )

            # Protection rules must not exist before the scaffold lands.
            self._advance(trail, CreationState.PUBLISHING, ident)
            self._publish(wc, repo.default_branch, _written_paths(records), ident)

            records += self._facets.initialize_all(
                api_kinds, replace(ctx, prior_facets=tuple(records))
            )

            self._advance(trail, CreationState.AGGREGATING, ident)
            now = now_iso()
            project = InitializedProject(
                params=params,
                repo=repo,
                facets=tuple(records),
                status=derive_status(records),
                created_at=now,
                updated_at=now,
            )
            self._store.put(project, message=f"Record securescaffold state for {ident}")
            self._advance(trail, CreationState.PERSISTED, ident)
        except ScaffoldError:
            self._advance(trail, CreationState.FAILED, ident)
            raise

        final = (
            CreationState.COMPLETE
            if project.status == ProjectStatus.COMPLETE
            else CreationState.PARTIALLY_FAILED
        )
        self._advance(trail, final, ident)
        warnings = tuple(f"facet {f.kind.value} failed: {f.error}" for f in project.failures)
        for w in warnings:
            logger.warning("%s: %s", ident, w)
        return CreationResult(project=project, state_trail=tuple(trail), warnings=warnings)

    def _publish(self, wc: str, branch: str, paths: list[str], identifier: str) -> None:
        try:
            sha = self._source.commit(wc, paths, INITIAL_COMMIT_MESSAGE)
            if sha is not None:
                self._source.push(wc, branch)
        except (subprocess.SubprocessError, OSError, RuntimeError) as exc:
            raise PersistenceFailed(f"could not publish scaffold for {identifier}: {exc}") from exc

    def update(self, identifier: str, facets: list[str]) -> InitializedProject:
        """Re-apply the named facets, replacing or appending their records.

        Records of facets not named here are left exactly as they were.
        """
        project = self._store.get(identifier)
        rerun_ecosystem = FacetKind.ECOSYSTEM in parse_kinds(facets or [])
        kinds = resolve_kinds(facets, project.params.language)
        if not kinds and not rerun_ecosystem:
            raise ValueError("update needs at least one facet kind")
        file_kinds, api_kinds = _split_by_category(kinds)
        wc = self._store.ensure_working_copy(project)

        records: list[InitializedFacet] = []
        eco = project.ecosystem
        if rerun_ecosystem:
            # A present manifest is kept; a missing one is bootstrapped again.
            eco = self._ecosystem.initialize(project.params, wc)
            records.append(eco)

        ctx = FacetContext(
            working_copy=wc,
            params=project.params,
            repo=project.repo,
            ecosystem=eco,
            prior_facets=project.facets,
        )
        records += self._facets.initialize_all(file_kinds, ctx)
        records += self._facets.initialize_all(
            api_kinds, replace(ctx, prior_facets=project.facets + tuple(records))
        )

        updated = project.with_facets(records)
        status = (
            ProjectStatus.ARCHIVED
            if project.status == ProjectStatus.ARCHIVED
            else derive_status(updated.facets)
        )
        updated = replace(updated, status=status, updated_at=now_iso())
        names = ", ".join(f.kind.value for f in records)
        self._store.put(
            updated, _written_paths(records), message=f"Update facets: {names}"
        )
        for f in records:
            if isinstance(f, FailedFacet):
                logger.warning("%s: facet %s failed on update: %s", identifier, f.kind.value, f.error)
        return updated

    def archive(self, identifier: str) -> InitializedProject:
        return self._store.archive(identifier)

    def get(self, identifier: str) -> InitializedProject:
        return self._store.get(identifier)

    def list(self) -> list[ProjectReferenceEntry]:
        return self._store.list()

    def list_available_facets(self) -> list[FacetDescriptor]:
        return self._facets.list_available()

    def list_facets(self, identifier: str) -> list[InitializedFacet]:
        return list(self._store.get(identifier).facets)

    def get_facet(self, identifier: str, kind: FacetKind) -> InitializedFacet:
        """Current state of one facet; raises ``DriftDetected`` on mismatch."""
        project = self._store.get(identifier)
        recorded = project.facet(kind)
        if recorded is None:
            raise FacetNotFound(f"{identifier} has no {kind.value} facet")
        wc = self._source.working_copy_path(identifier)
        if not os.path.isdir(wc):
            wc = self._store.ensure_working_copy(project)
        ctx = FacetContext(
            working_copy=wc,
            params=project.params,
            repo=project.repo,
            ecosystem=project.ecosystem,
            prior_facets=project.facets,
        )
        return self._facets.get(ctx, recorded)

    def list_outputs(
        self, identifier: str, *, release: str | None = None, output_type: str | None = None
    ) -> list[ProjectOutputReference]:
        self._store.get(identifier)
        return self._outputs.list(identifier, release=release, output_type=output_type)

    def get_output(self, identifier: str, name: str, *, release: str | None = None) -> bytes:
        self._store.get(identifier)
        return self._outputs.get(identifier, name, release=release)
