from __future__ import annotations

from typing import Any


class ScaffoldError(RuntimeError):
    """Base class for engine-level failures surfaced to callers."""

    code = "scaffold_error"


class UpstreamUnavailable(ScaffoldError):
    """The hosting platform could not be reached or rejected the request.

    Callers may retry; nothing retries internally.
    """

    code = "upstream_unavailable"


class WorkingCopyFailed(UpstreamUnavailable):
    """The remote repository exists but no local working copy could be made."""

    code = "working_copy_failed"

    def __init__(self, message: str, *, repo: Any = None) -> None:
        super().__init__(message)
        self.repo = repo

    @property
    def advice(self) -> str:
        name = getattr(self.repo, "full_name", None) or "the remote repository"
        return (
            f"{name} was created but has no local state; "
            "delete it manually or clone it and re-run the scaffold."
        )


class EcosystemBootstrapFailed(ScaffoldError):
    code = "ecosystem_bootstrap_failed"


class FacetInitFailed(ScaffoldError):
    code = "facet_init_failed"

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(f"{kind}: {message}")
        self.kind = kind


class PersistenceFailed(ScaffoldError):
    """The authoritative state record could not be written."""

    code = "persistence_failed"


class DriftDetected(ScaffoldError):
    code = "drift_detected"

    def __init__(
        self,
        kind: str,
        *,
        paths: list[str],
        recorded: Any = None,
        current: Any = None,
    ) -> None:
        super().__init__(f"{kind} drifted from its recorded state: {', '.join(paths)}")
        self.kind = kind
        self.paths = paths
        self.recorded = recorded
        self.current = current


class ProjectNotFound(ScaffoldError):
    code = "project_not_found"


class FacetNotFound(ScaffoldError):
    code = "facet_not_found"


class OutputNotFound(ScaffoldError):
    code = "output_not_found"
