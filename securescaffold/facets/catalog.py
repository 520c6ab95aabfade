from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from securescaffold.config import default_facet_kinds
from securescaffold.projects.models import FacetKind, parse_facet_kind

FacetCategory = Literal["ecosystem", "source_bundle", "api_bundle"]


@dataclass(frozen=True)
class FacetDescriptor:
    kind: FacetKind
    category: FacetCategory
    label: str
    languages: tuple[str, ...] = ("go", "maven")
    # Applied when a request does not name its facets.
    default: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "category": self.category,
            "label": self.label,
            "languages": list(self.languages),
            "default": self.default,
        }


# Declared application order. API facets come last so protection rules are
# applied only after the initial scaffold has been pushed.
_CATALOG: tuple[FacetDescriptor, ...] = (
    FacetDescriptor(FacetKind.ECOSYSTEM, "ecosystem", "Language module bootstrap"),
    FacetDescriptor(FacetKind.README, "source_bundle", "README"),
    FacetDescriptor(FacetKind.LICENSE, "source_bundle", "Apache-2.0 license"),
    FacetDescriptor(FacetKind.GITIGNORE, "source_bundle", ".gitignore"),
    FacetDescriptor(FacetKind.SECURITY_POLICY, "source_bundle", "Security policy (SECURITY.md)"),
    FacetDescriptor(
        FacetKind.SECURITY_INSIGHTS, "source_bundle", "OpenSSF Security Insights"
    ),
    FacetDescriptor(FacetKind.SBOM_GENERATOR, "source_bundle", "SBOM generation workflow"),
    FacetDescriptor(FacetKind.SLSA_BUILD, "source_bundle", "SLSA provenance release workflow"),
    FacetDescriptor(
        FacetKind.DEPENDENCY_UPDATE_TOOL, "source_bundle", "Dependabot configuration"
    ),
    FacetDescriptor(FacetKind.FUZZING, "source_bundle", "CIFuzz workflow"),
    FacetDescriptor(FacetKind.SCORECARD, "source_bundle", "OpenSSF Scorecard workflow"),
    FacetDescriptor(FacetKind.SAST, "source_bundle", "CodeQL static analysis workflow"),
    FacetDescriptor(
        FacetKind.DEFAULT_SOURCE_CODE,
        "source_bundle",
        "Starter source code",
        languages=("go",),
    ),
    FacetDescriptor(FacetKind.BRANCH_PROTECTION, "api_bundle", "Default branch protection"),
    FacetDescriptor(
        FacetKind.SIGNED_COMMITS,
        "api_bundle",
        "Require signed commits",
        default=False,
    ),
    FacetDescriptor(
        FacetKind.VULNERABILITY_REPORTING,
        "api_bundle",
        "Private vulnerability reporting",
    ),
)

_BY_KIND: dict[FacetKind, FacetDescriptor] = {d.kind: d for d in _CATALOG}
_ORDER: dict[FacetKind, int] = {d.kind: i for i, d in enumerate(_CATALOG)}


def list_available() -> list[FacetDescriptor]:
    return list(_CATALOG)


def descriptor(kind: FacetKind) -> FacetDescriptor:
    return _BY_KIND[kind]


def declared_order(kinds: list[FacetKind]) -> list[FacetKind]:
    """Deduplicate and sort kinds into catalog order."""
    return sorted(set(kinds), key=lambda k: _ORDER[k])


def parse_kinds(raw: list[str]) -> list[FacetKind]:
    out: list[FacetKind] = []
    unknown: list[str] = []
    for item in raw:
        kind = parse_facet_kind(item)
        if kind is None:
            unknown.append(str(item))
        else:
            out.append(kind)
    if unknown:
        raise ValueError(f"unknown facet kind(s): {', '.join(unknown)}")
    return out


def default_kinds(language: str) -> list[FacetKind]:
    override = default_facet_kinds()
    if override is not None:
        kinds = parse_kinds(override)
    else:
        kinds = [d.kind for d in _CATALOG if d.default and language in d.languages]
    return declared_order([k for k in kinds if k != FacetKind.ECOSYSTEM])


def resolve_kinds(raw: list[str] | None, language: str) -> list[FacetKind]:
    """Facets to apply after the ecosystem bootstrap, in declared order.

    ``None`` selects the defaults for the language. The ecosystem facet is
    always applied by the engine and is dropped here if named.
    """
    if raw is None:
        return default_kinds(language)
    return declared_order([k for k in parse_kinds(raw) if k != FacetKind.ECOSYSTEM])
