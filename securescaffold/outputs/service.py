from __future__ import annotations

import logging
from collections.abc import Callable

from securescaffold.errors import OutputNotFound, UpstreamUnavailable
from securescaffold.github.client import GitHubAsset, GitHubClient, GitHubError
from securescaffold.projects.models import ProjectOutputReference

logger = logging.getLogger(__name__)

_SBOM_MARKERS = (".spdx.", ".cdx.")


def classify_asset(name: str) -> str:
    n = (name or "").lower()
    return "sbom" if any(m in n for m in _SBOM_MARKERS) else "custom"


def _reference(asset: GitHubAsset) -> ProjectOutputReference:
    return ProjectOutputReference(
        name=asset.name,
        output_type=classify_asset(asset.name),  # type: ignore[arg-type]
        url=asset.browser_download_url or asset.url,
        asset_id=asset.id,
    )


class OutputService:
    """Release assets published by a project's workflows (SBOMs, binaries)."""

    def __init__(self, client: Callable[[], GitHubClient] | None = None) -> None:
        self._client = client or GitHubClient.from_env

    def _assets(self, identifier: str, release: str | None) -> list[GitHubAsset]:
        # A project that has never released simply has no outputs yet.
        try:
            rel = self._client().get_release(identifier, tag=release)
        except GitHubError as exc:
            raise UpstreamUnavailable(f"could not read releases of {identifier}: {exc}") from exc
        return list(rel.assets) if rel is not None else []

    def list(
        self, identifier: str, *, release: str | None = None, output_type: str | None = None
    ) -> list[ProjectOutputReference]:
        refs = [_reference(a) for a in self._assets(identifier, release)]
        if output_type:
            refs = [r for r in refs if r.output_type == output_type]
        return refs

    def get(self, identifier: str, name: str, *, release: str | None = None) -> bytes:
        """Download the content of the asset called ``name``."""
        asset = next((a for a in self._assets(identifier, release) if a.name == name), None)
        if asset is None:
            raise OutputNotFound(f"output {name} not found for {identifier}")
        try:
            data = self._client().download_asset(identifier, asset.id)
        except GitHubError as exc:
            raise UpstreamUnavailable(f"could not download {name}: {exc}") from exc
        if data is None:
            raise OutputNotFound(f"output {name} not found for {identifier}")
        logger.info("Downloaded output %s (%d bytes) from %s", name, len(data), identifier)
        return data
