"""Data model for scaffolded projects.

Everything here is plain data: frozen dataclasses plus JSON converters. The
canonical state file committed into each project repository is exactly
``InitializedProject.to_dict()``, so external tools can read it without this
package.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar, Literal, Union

Language = Literal["go", "maven"]
Visibility = Literal["public", "private"]
OwnerKind = Literal["organization", "user"]

SUPPORTED_LANGUAGES: tuple[str, ...] = ("go", "maven")

_REPO_NAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,100}$")


class FacetKind(str, Enum):
    ECOSYSTEM = "ecosystem"
    README = "readme"
    LICENSE = "license"
    GITIGNORE = "gitignore"
    SECURITY_POLICY = "security_policy"
    SECURITY_INSIGHTS = "security_insights"
    SBOM_GENERATOR = "sbom_generator"
    SLSA_BUILD = "slsa_build"
    DEPENDENCY_UPDATE_TOOL = "dependency_update_tool"
    FUZZING = "fuzzing"
    SCORECARD = "scorecard"
    SAST = "sast"
    DEFAULT_SOURCE_CODE = "default_source_code"
    BRANCH_PROTECTION = "branch_protection"
    SIGNED_COMMITS = "signed_commits"
    VULNERABILITY_REPORTING = "vulnerability_reporting"


def parse_facet_kind(raw: Any) -> FacetKind | None:
    v = str(raw or "").strip().lower().replace("-", "_")
    try:
        return FacetKind(v)
    except ValueError:
        return None


class ProjectStatus(str, Enum):
    COMPLETE = "complete"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    ARCHIVED = "archived"


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class ProjectParams:
    name: str
    organization: str
    language: Language
    description: str = ""
    visibility: Visibility = "public"
    owner_kind: OwnerKind = "organization"

    def __post_init__(self) -> None:
        if not _REPO_NAME_RE.match(self.name or "") or self.name in (".", ".."):
            raise ValueError(f"invalid repository name: {self.name!r}")
        if not (self.organization or "").strip():
            raise ValueError("organization must be non-empty")
        if self.language not in SUPPORTED_LANGUAGES:
            raise ValueError(
                f"unsupported language {self.language!r}; "
                f"expected one of: {', '.join(SUPPORTED_LANGUAGES)}"
            )
        if self.visibility not in ("public", "private"):
            raise ValueError(f"invalid visibility: {self.visibility!r}")
        if self.owner_kind not in ("organization", "user"):
            raise ValueError(f"invalid owner kind: {self.owner_kind!r}")

    @property
    def identifier(self) -> str:
        return f"{self.organization}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "organization": self.organization,
            "language": self.language,
            "description": self.description,
            "visibility": self.visibility,
            "owner_kind": self.owner_kind,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectParams:
        return cls(
            name=str(data.get("name") or ""),
            organization=str(data.get("organization") or ""),
            language=str(data.get("language") or "").strip().lower(),  # type: ignore[arg-type]
            description=str(data.get("description") or ""),
            visibility=str(data.get("visibility") or "public"),  # type: ignore[arg-type]
            owner_kind=str(data.get("owner_kind") or "organization"),  # type: ignore[arg-type]
        )


@dataclass(frozen=True)
class InitializedRepo:
    owner: str
    name: str
    clone_url: str
    html_url: str
    default_branch: str
    created_at: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "clone_url": self.clone_url,
            "html_url": self.html_url,
            "default_branch": self.default_branch,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InitializedRepo:
        return cls(
            owner=str(data["owner"]),
            name=str(data["name"]),
            clone_url=str(data.get("clone_url") or ""),
            html_url=str(data.get("html_url") or ""),
            default_branch=str(data.get("default_branch") or "main"),
            created_at=str(data.get("created_at") or ""),
        )


@dataclass(frozen=True)
class SourceFile:
    # Relative to the working copy root, always with forward slashes.
    path: str
    sha256: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "sha256": self.sha256}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceFile:
        return cls(path=str(data["path"]), sha256=str(data["sha256"]))


def _bundle_hash(files: tuple[SourceFile, ...]) -> str:
    lines = sorted(f"{f.path}:{f.sha256}" for f in files)
    return sha256_text("\n".join(lines))


@dataclass(frozen=True)
class SourceBundleFacet:
    """A facet materialized as one or more files in the working copy."""

    variant: ClassVar[str] = "source_bundle"

    kind: FacetKind
    files: tuple[SourceFile, ...]

    @property
    def content_hash(self) -> str:
        return _bundle_hash(self.files)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant": self.variant,
            "kind": self.kind.value,
            "files": [f.to_dict() for f in self.files],
            "content_hash": self.content_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceBundleFacet:
        return cls(
            kind=FacetKind(data["kind"]),
            files=tuple(SourceFile.from_dict(f) for f in data.get("files") or []),
        )


@dataclass(frozen=True)
class ApiCall:
    name: str
    method: str
    url: str
    request: dict[str, Any] | None = None
    response: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "method": self.method,
            "url": self.url,
            "request": self.request,
            "response": self.response,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApiCall:
        return cls(
            name=str(data.get("name") or ""),
            method=str(data.get("method") or ""),
            url=str(data.get("url") or ""),
            request=data.get("request"),
            response=data.get("response"),
        )


@dataclass(frozen=True)
class ApiBundleFacet:
    """A facet materialized as settings applied through the hosting API."""

    variant: ClassVar[str] = "api_bundle"

    kind: FacetKind
    calls: tuple[ApiCall, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant": self.variant,
            "kind": self.kind.value,
            "calls": [c.to_dict() for c in self.calls],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApiBundleFacet:
        return cls(
            kind=FacetKind(data["kind"]),
            calls=tuple(ApiCall.from_dict(c) for c in data.get("calls") or []),
        )


@dataclass(frozen=True)
class EcosystemFacet:
    variant: ClassVar[str] = "ecosystem"

    language: Language
    module: str
    # Directory (relative) the bootstrap generated into; "." for in-place tools.
    root: str
    files: tuple[SourceFile, ...]

    @property
    def kind(self) -> FacetKind:
        return FacetKind.ECOSYSTEM

    @property
    def manifest_path(self) -> str:
        return self.files[0].path if self.files else ""

    @property
    def manifest_sha256(self) -> str:
        return self.files[0].sha256 if self.files else ""

    @property
    def content_hash(self) -> str:
        return _bundle_hash(self.files)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant": self.variant,
            "kind": self.kind.value,
            "language": self.language,
            "module": self.module,
            "root": self.root,
            "manifest_path": self.manifest_path,
            "manifest_sha256": self.manifest_sha256,
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EcosystemFacet:
        return cls(
            language=str(data["language"]),  # type: ignore[arg-type]
            module=str(data.get("module") or ""),
            root=str(data.get("root") or "."),
            files=tuple(SourceFile.from_dict(f) for f in data.get("files") or []),
        )


@dataclass(frozen=True)
class FailedFacet:
    """Inline marker for a facet that could not be applied."""

    variant: ClassVar[str] = "failed"

    kind: FacetKind
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"variant": self.variant, "kind": self.kind.value, "error": self.error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FailedFacet:
        return cls(kind=FacetKind(data["kind"]), error=str(data.get("error") or ""))


InitializedFacet = Union[SourceBundleFacet, ApiBundleFacet, EcosystemFacet, FailedFacet]

_FACET_VARIANTS: dict[str, type] = {
    SourceBundleFacet.variant: SourceBundleFacet,
    ApiBundleFacet.variant: ApiBundleFacet,
    EcosystemFacet.variant: EcosystemFacet,
    FailedFacet.variant: FailedFacet,
}


def facet_from_dict(data: dict[str, Any]) -> InitializedFacet:
    variant = str(data.get("variant") or "")
    cls = _FACET_VARIANTS.get(variant)
    if cls is None:
        raise ValueError(f"unknown facet variant: {variant!r}")
    return cls.from_dict(data)  # type: ignore[attr-defined,no-any-return]


def derive_status(facets: tuple[InitializedFacet, ...] | list[InitializedFacet]) -> ProjectStatus:
    if any(isinstance(f, FailedFacet) for f in facets):
        return ProjectStatus.PARTIALLY_FAILED
    return ProjectStatus.COMPLETE


@dataclass(frozen=True)
class InitializedProject:
    params: ProjectParams
    repo: InitializedRepo
    # Application order; each kind appears at most once.
    facets: tuple[InitializedFacet, ...]
    status: ProjectStatus
    created_at: str
    updated_at: str

    @property
    def identifier(self) -> str:
        return self.repo.full_name

    @property
    def failures(self) -> list[FailedFacet]:
        return [f for f in self.facets if isinstance(f, FailedFacet)]

    @property
    def ecosystem(self) -> EcosystemFacet | None:
        for f in self.facets:
            if isinstance(f, EcosystemFacet):
                return f
        return None

    def facet(self, kind: FacetKind) -> InitializedFacet | None:
        for f in self.facets:
            if f.kind == kind:
                return f
        return None

    def with_facets(self, records: list[InitializedFacet]) -> InitializedProject:
        """Replace records of already-present kinds in place, append new kinds."""
        out = list(self.facets)
        for rec in records:
            idx = next((i for i, f in enumerate(out) if f.kind == rec.kind), None)
            if idx is None:
                out.append(rec)
            else:
                out[idx] = rec
        return replace(self, facets=tuple(out))

    def to_dict(self) -> dict[str, Any]:
        return {
            "params": self.params.to_dict(),
            "repo": self.repo.to_dict(),
            "facets": [f.to_dict() for f in self.facets],
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InitializedProject:
        return cls(
            params=ProjectParams.from_dict(data["params"]),
            repo=InitializedRepo.from_dict(data["repo"]),
            facets=tuple(facet_from_dict(f) for f in data.get("facets") or []),
            status=ProjectStatus(data["status"]),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
        )


@dataclass(frozen=True)
class ProjectReferenceEntry:
    identifier: str
    repo_url: str
    local_path: str | None
    status: ProjectStatus
    updated_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "repo_url": self.repo_url,
            "local_path": self.local_path,
            "status": self.status.value,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectReferenceEntry:
        local_path = data.get("local_path")
        return cls(
            identifier=str(data["identifier"]),
            repo_url=str(data.get("repo_url") or ""),
            local_path=str(local_path) if local_path else None,
            status=ProjectStatus(data.get("status") or ProjectStatus.COMPLETE.value),
            updated_at=str(data.get("updated_at") or ""),
        )


@dataclass(frozen=True)
class ProjectOutputReference:
    name: str
    output_type: Literal["sbom", "custom"]
    url: str
    asset_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "output_type": self.output_type,
            "url": self.url,
            "asset_id": self.asset_id,
        }
