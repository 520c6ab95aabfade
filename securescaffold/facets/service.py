"""Facet initialization and read paths.

Each facet is applied on its own: a failure is converted into an inline
``FailedFacet`` marker at this boundary and never aborts sibling facets.
``get`` never mutates anything; it recomputes the materialized state and
raises ``DriftDetected`` when it no longer matches the record.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import Any, Protocol

from securescaffold.ecosystem.service import EcosystemService
from securescaffold.errors import DriftDetected, FacetInitFailed, FacetNotFound, UpstreamUnavailable
from securescaffold.facets import content
from securescaffold.facets.catalog import FacetDescriptor, descriptor, list_available
from securescaffold.github.client import GitHubClient, GitHubError
from securescaffold.projects.models import (
    ApiBundleFacet,
    ApiCall,
    EcosystemFacet,
    FacetKind,
    FailedFacet,
    InitializedFacet,
    InitializedRepo,
    ProjectParams,
    SourceBundleFacet,
    SourceFile,
    sha256_text,
)
from securescaffold.source.service import SourceService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FacetContext:
    working_copy: str
    params: ProjectParams
    repo: InitializedRepo
    ecosystem: EcosystemFacet | None = None
    # Records produced earlier in the same application sequence.
    prior_facets: tuple[InitializedFacet, ...] = ()

    def content_context(self) -> content.ContentContext:
        return content.build_content_context(self.params, self.repo, self.ecosystem)


class Facet(Protocol):
    kind: FacetKind

    def initialize(self, ctx: FacetContext) -> InitializedFacet: ...

    def get(self, ctx: FacetContext, recorded: InitializedFacet) -> InitializedFacet: ...


Renderer = Callable[[content.ContentContext], list[tuple[str, str]]]


def _single(path: str, fn: Callable[[content.ContentContext], str]) -> Renderer:
    return lambda ctx: [(path, fn(ctx))]


def _workflow(name: str, fn: Callable[[content.ContentContext], str]) -> Renderer:
    return _single(f".github/workflows/{name}", fn)


_RENDERERS: dict[FacetKind, Renderer] = {
    FacetKind.README: _single("README.md", content.render_readme),
    FacetKind.LICENSE: _single("LICENSE", content.render_license),
    FacetKind.GITIGNORE: _single(".gitignore", content.render_gitignore),
    FacetKind.SECURITY_POLICY: _single("SECURITY.md", content.render_security_policy),
    FacetKind.SECURITY_INSIGHTS: _single(
        "SECURITY_INSIGHTS.yml", content.render_security_insights
    ),
    FacetKind.SBOM_GENERATOR: _workflow("sbom.yml", content.render_sbom_workflow),
    FacetKind.SLSA_BUILD: _workflow("releases.yml", content.render_slsa_workflow),
    FacetKind.DEPENDENCY_UPDATE_TOOL: _single(
        ".github/dependabot.yml", content.render_dependabot
    ),
    FacetKind.FUZZING: _workflow("cifuzz.yml", content.render_cifuzz),
    FacetKind.SCORECARD: _workflow("scorecard.yml", content.render_scorecard_workflow),
    FacetKind.SAST: _workflow("codeql.yml", content.render_codeql_workflow),
    FacetKind.DEFAULT_SOURCE_CODE: _single("main.go", content.render_main_go),
}

# Facets that read the ecosystem manifest and cannot run without it.
_NEEDS_MANIFEST = frozenset({FacetKind.SBOM_GENERATOR, FacetKind.DEPENDENCY_UPDATE_TOOL})


def _require_language(kind: FacetKind, params: ProjectParams) -> None:
    d = descriptor(kind)
    if params.language not in d.languages:
        raise FacetInitFailed(kind.value, f"not supported for {params.language} projects")


class SourceBundleHandler:
    def __init__(self, kind: FacetKind, renderer: Renderer, *, source: SourceService) -> None:
        self.kind = kind
        self._render = renderer
        self._source = source

    def _check_manifest(self, ctx: FacetContext) -> None:
        eco = ctx.ecosystem
        if eco is None or not eco.manifest_path:
            raise FacetInitFailed(self.kind.value, "no ecosystem manifest recorded")
        if not os.path.isfile(os.path.join(ctx.working_copy, eco.manifest_path)):
            raise FacetInitFailed(
                self.kind.value, f"ecosystem manifest missing: {eco.manifest_path}"
            )

    def initialize(self, ctx: FacetContext) -> InitializedFacet:
        _require_language(self.kind, ctx.params)
        if self.kind in _NEEDS_MANIFEST:
            self._check_manifest(ctx)

        # Render everything before touching the working copy.
        rendered = self._render(ctx.content_context())

        previous: dict[str, bytes | None] = {}
        try:
            for path, text in rendered:
                try:
                    previous[path] = self._source.read_bytes(ctx.working_copy, path)
                except FileNotFoundError:
                    previous[path] = None
                self._source.write_file(ctx.working_copy, path, text)
        except Exception:
            self._restore(ctx.working_copy, previous)
            raise

        files = tuple(SourceFile(path=p, sha256=sha256_text(t)) for p, t in rendered)
        for f in files:
            logger.info("Wrote %s for facet %s", f.path, self.kind.value)
        return SourceBundleFacet(kind=self.kind, files=files)

    def _restore(self, working_copy: str, previous: dict[str, bytes | None]) -> None:
        for path, data in previous.items():
            target = os.path.join(working_copy, path)
            if data is None:
                with suppress(FileNotFoundError):
                    os.unlink(target)
                continue
            with open(target, "wb") as fh:
                fh.write(data)

    def get(self, ctx: FacetContext, recorded: InitializedFacet) -> InitializedFacet:
        if not isinstance(recorded, SourceBundleFacet):
            raise TypeError(f"expected a source bundle record for {self.kind.value}")
        files, drifted = self._source.rehash(ctx.working_copy, recorded.files)
        current = SourceBundleFacet(kind=self.kind, files=files)
        if drifted:
            raise DriftDetected(
                self.kind.value, paths=drifted, recorded=recorded, current=current
            )
        return current


def _enabled_flags(payload: Any, keys: Iterable[str]) -> dict[str, Any]:
    """Reduce a branch protection payload to the on/off settings named in ``keys``.

    Other toggles in the payload (``required_signatures``, ``lock_branch``, ...)
    belong to other facets or to GitHub defaults and are left out.
    """
    if not isinstance(payload, dict):
        return {}
    out: dict[str, Any] = {}
    for k in keys:
        v = payload.get(k)
        if isinstance(v, dict) and "enabled" in v:
            out[k] = bool(v["enabled"])
    return out


class ApiBundleHandler:
    """Base for facets applied through the GitHub API."""

    kind: FacetKind

    def __init__(self, client: Callable[[], GitHubClient]) -> None:
        self._client = client

    def _endpoint(self, ctx: FacetContext) -> str:
        raise NotImplementedError

    def _apply(self, ctx: FacetContext) -> ApiCall:
        raise NotImplementedError

    def _read(self, ctx: FacetContext) -> Any:
        raise NotImplementedError

    def _comparable(self, response: Any) -> Any:
        return response

    def initialize(self, ctx: FacetContext) -> InitializedFacet:
        call = self._apply(ctx)
        logger.info("Applied %s via %s", self.kind.value, call.url)
        return ApiBundleFacet(kind=self.kind, calls=(call,))

    def get(self, ctx: FacetContext, recorded: InitializedFacet) -> InitializedFacet:
        if not isinstance(recorded, ApiBundleFacet):
            raise TypeError(f"expected an API bundle record for {self.kind.value}")
        try:
            live = self._read(ctx)
        except GitHubError as exc:
            raise UpstreamUnavailable(f"could not read {self.kind.value}: {exc}") from exc
        url = self._endpoint(ctx)
        current = ApiBundleFacet(
            kind=self.kind,
            calls=(ApiCall(name=f"Read {self.kind.value}", method="GET", url=url, response=live),),
        )
        expected = recorded.calls[-1].response if recorded.calls else None
        if self._comparable(live) != self._comparable(expected):
            raise DriftDetected(self.kind.value, paths=[url], recorded=recorded, current=current)
        return current


class BranchProtectionHandler(ApiBundleHandler):
    kind = FacetKind.BRANCH_PROTECTION

    RULES: dict[str, Any] = {
        "enforce_admins": True,
        "required_pull_request_reviews": None,
        "required_status_checks": None,
        "restrictions": None,
        "required_linear_history": True,
        "allow_force_pushes": False,
        "allow_deletions": False,
    }

    # Rules GitHub echoes back as {"enabled": bool}.
    FLAGS = ("enforce_admins", "required_linear_history", "allow_force_pushes", "allow_deletions")

    def _endpoint(self, ctx: FacetContext) -> str:
        return f"/repos/{ctx.repo.full_name}/branches/{ctx.repo.default_branch}/protection"

    def _apply(self, ctx: FacetContext) -> ApiCall:
        rules = dict(self.RULES)
        resp = self._client().put_branch_protection(
            ctx.repo.full_name, branch=ctx.repo.default_branch, rules=rules
        )
        return ApiCall(
            name="Enforce branch protection",
            method="PUT",
            url=self._endpoint(ctx),
            request=rules,
            response=_enabled_flags(resp, self.FLAGS),
        )

    def _read(self, ctx: FacetContext) -> Any:
        live = self._client().get_branch_protection(
            ctx.repo.full_name, branch=ctx.repo.default_branch
        )
        return _enabled_flags(live, self.FLAGS) if live is not None else None

    def _comparable(self, response: Any) -> Any:
        if not isinstance(response, dict):
            return response
        # Stored records may carry toggles owned by other facets.
        return {k: v for k, v in response.items() if k in self.FLAGS}


class SignedCommitsHandler(ApiBundleHandler):
    kind = FacetKind.SIGNED_COMMITS

    def _endpoint(self, ctx: FacetContext) -> str:
        return (
            f"/repos/{ctx.repo.full_name}/branches/{ctx.repo.default_branch}"
            "/protection/required_signatures"
        )

    def _apply(self, ctx: FacetContext) -> ApiCall:
        resp = self._client().enable_signed_commits(
            ctx.repo.full_name, branch=ctx.repo.default_branch
        )
        return ApiCall(
            name="Require signed commits",
            method="POST",
            url=self._endpoint(ctx),
            response={"enabled": bool(resp.get("enabled", True))},
        )

    def _read(self, ctx: FacetContext) -> Any:
        enabled = self._client().get_signed_commits(
            ctx.repo.full_name, branch=ctx.repo.default_branch
        )
        return {"enabled": enabled}


class VulnerabilityReportingHandler(ApiBundleHandler):
    kind = FacetKind.VULNERABILITY_REPORTING

    def _endpoint(self, ctx: FacetContext) -> str:
        return f"/repos/{ctx.repo.full_name}/private-vulnerability-reporting"

    def _apply(self, ctx: FacetContext) -> ApiCall:
        self._client().enable_vulnerability_reporting(ctx.repo.full_name)
        return ApiCall(
            name="Enable private vulnerability reporting",
            method="PUT",
            url=self._endpoint(ctx),
            response={"enabled": True},
        )

    def _read(self, ctx: FacetContext) -> Any:
        return {"enabled": self._client().get_vulnerability_reporting(ctx.repo.full_name)}


class FacetService:
    def __init__(
        self,
        *,
        source: SourceService | None = None,
        ecosystem: EcosystemService | None = None,
        client: Callable[[], GitHubClient] | None = None,
    ) -> None:
        self._source = source or SourceService()
        self._ecosystem = ecosystem or EcosystemService(source=self._source)
        self._client = client or GitHubClient.from_env
        self._handlers: dict[FacetKind, Facet] = {}
        for kind, renderer in _RENDERERS.items():
            self._handlers[kind] = SourceBundleHandler(kind, renderer, source=self._source)
        for handler in (
            BranchProtectionHandler(self._client),
            SignedCommitsHandler(self._client),
            VulnerabilityReportingHandler(self._client),
        ):
            self._handlers[handler.kind] = handler

    def list_available(self) -> list[FacetDescriptor]:
        return list_available()

    def handler(self, kind: FacetKind) -> Facet:
        h = self._handlers.get(kind)
        if h is None:
            raise FacetNotFound(f"no handler for facet {kind.value}")
        return h

    def initialize(self, kind: FacetKind, ctx: FacetContext) -> InitializedFacet:
        try:
            return self.handler(kind).initialize(ctx)
        except Exception as exc:
            logger.exception("Facet %s failed to initialize", kind.value)
            return FailedFacet(kind=kind, error=str(exc) or type(exc).__name__)

    def initialize_all(self, kinds: list[FacetKind], ctx: FacetContext) -> list[InitializedFacet]:
        """Apply ``kinds`` sequentially, threading earlier records through."""
        out: list[InitializedFacet] = []
        for kind in kinds:
            step_ctx = replace(ctx, prior_facets=ctx.prior_facets + tuple(out))
            record = self.initialize(kind, step_ctx)
            if isinstance(record, FailedFacet):
                logger.warning("Facet %s recorded as failed: %s", kind.value, record.error)
            out.append(record)
        return out

    def get(self, ctx: FacetContext, recorded: InitializedFacet) -> InitializedFacet:
        if isinstance(recorded, FailedFacet):
            return recorded
        if isinstance(recorded, EcosystemFacet):
            return self._ecosystem.get(ctx.working_copy, recorded)
        return self.handler(recorded.kind).get(ctx, recorded)
