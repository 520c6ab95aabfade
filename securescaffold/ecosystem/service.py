from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from urllib.parse import urlparse

from securescaffold.config import command_timeout_seconds, github_web_url
from securescaffold.errors import DriftDetected, EcosystemBootstrapFailed
from securescaffold.projects.models import (
    EcosystemFacet,
    ProjectParams,
    SourceFile,
    sha256_bytes,
)
from securescaffold.source.runner import CommandRunner, SubprocessRunner, describe_failure
from securescaffold.source.service import SourceService

logger = logging.getLogger(__name__)

_JAVA_SEGMENT_RE = re.compile(r"[^a-z0-9_]+")


@dataclass(frozen=True)
class EcosystemPlan:
    language: str
    module: str
    root: str
    manifest_path: str
    command: tuple[str, ...]


def go_module(params: ProjectParams) -> str:
    host = urlparse(github_web_url()).netloc or "github.com"
    return f"{host}/{params.organization}/{params.name}"


def _java_segment(s: str) -> str:
    seg = _JAVA_SEGMENT_RE.sub("_", (s or "").strip().lower()).strip("_")
    if not seg:
        return "x"
    return f"_{seg}" if seg[0].isdigit() else seg


def maven_coordinates(params: ProjectParams) -> tuple[str, str]:
    group_id = ".".join(["com", _java_segment(params.organization), _java_segment(params.name)])
    return group_id, params.name


def plan_for(params: ProjectParams) -> EcosystemPlan:
    if params.language == "go":
        module = go_module(params)
        return EcosystemPlan(
            language="go",
            module=module,
            root=".",
            manifest_path="go.mod",
            command=("go", "mod", "init", module),
        )
    if params.language == "maven":
        group_id, artifact_id = maven_coordinates(params)
        return EcosystemPlan(
            language="maven",
            module=f"{group_id}:{artifact_id}",
            root=artifact_id,
            manifest_path=f"{artifact_id}/pom.xml",
            command=(
                "mvn",
                "-B",
                "archetype:generate",
                f"-DgroupId={group_id}",
                f"-DartifactId={artifact_id}",
                "-DarchetypeArtifactId=maven-archetype-quickstart",
                "-DinteractiveMode=false",
            ),
        )
    raise EcosystemBootstrapFailed(f"unsupported language: {params.language}")


class EcosystemService:
    """Bootstraps the language module system inside a working copy."""

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        source: SourceService | None = None,
        timeout: float | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._source = source or SourceService()
        self._timeout = timeout or command_timeout_seconds()

    def initialize(self, params: ProjectParams, working_copy: str) -> EcosystemFacet:
        plan = plan_for(params)
        manifest = os.path.join(working_copy, plan.manifest_path)

        # The native tools refuse to run twice; an existing manifest means done.
        if not os.path.isfile(manifest):
            try:
                self._runner.run(
                    list(plan.command), cwd=working_copy, check=True, timeout=self._timeout
                )
            except (subprocess.SubprocessError, OSError) as exc:
                raise EcosystemBootstrapFailed(
                    f"{plan.language} bootstrap failed: {describe_failure(exc)}"
                ) from exc
            if not os.path.isfile(manifest):
                raise EcosystemBootstrapFailed(
                    f"{plan.language} bootstrap did not produce {plan.manifest_path}"
                )
            logger.info("Initialized %s module %s", plan.language, plan.module)

        sha = sha256_bytes(self._source.read_bytes(working_copy, plan.manifest_path))
        return EcosystemFacet(
            language=plan.language,  # type: ignore[arg-type]
            module=plan.module,
            root=plan.root,
            files=(SourceFile(path=plan.manifest_path, sha256=sha),),
        )

    def get(self, working_copy: str, recorded: EcosystemFacet) -> EcosystemFacet:
        files, drifted = self._source.rehash(working_copy, recorded.files)
        current = EcosystemFacet(
            language=recorded.language,
            module=recorded.module,
            root=recorded.root,
            files=files,
        )
        if drifted:
            raise DriftDetected(
                recorded.kind.value, paths=drifted, recorded=recorded, current=current
            )
        return current
