from __future__ import annotations

import json
import logging
import subprocess

from securescaffold.config import default_branch, github_web_url
from securescaffold.errors import UpstreamUnavailable, WorkingCopyFailed
from securescaffold.github.client import GitHubClient, GitHubError
from securescaffold.projects.models import InitializedRepo, ProjectParams, now_iso
from securescaffold.source.runner import describe_failure
from securescaffold.source.service import SourceService

logger = logging.getLogger(__name__)


def repository_created_event(repo: InitializedRepo) -> dict:
    """CDEvents-style record of a repository creation, logged for audit."""
    return {
        "context": {
            "id": repo.full_name,
            "source": "securescaffold.github.creator",
            "timestamp": repo.created_at,
            "type": "dev.cdevents.repository.created.0.1.1",
            "version": "0.3.0",
        },
        "subject": {
            "id": repo.full_name,
            "type": "repository",
            "content": {
                "name": repo.name,
                "owner": repo.owner,
                "url": repo.html_url,
                "viewUrl": repo.html_url,
            },
        },
    }


class RepoService:
    """Creates remote repositories and maps them to local working copies."""

    def __init__(
        self,
        *,
        client: GitHubClient | None = None,
        source: SourceService | None = None,
    ) -> None:
        self._client = client
        self._source = source or SourceService()

    @property
    def source(self) -> SourceService:
        return self._source

    def client(self) -> GitHubClient:
        if self._client is None:
            self._client = GitHubClient.from_env()
        return self._client

    def working_copy_path(self, identifier: str) -> str:
        return self._source.working_copy_path(identifier)

    def create(self, params: ProjectParams) -> InitializedRepo:
        try:
            created = self.client().create_repo(
                owner=params.organization,
                name=params.name,
                description=params.description,
                private=params.visibility == "private",
                owner_is_org=params.owner_kind == "organization",
            )
        except GitHubError as exc:
            raise UpstreamUnavailable(
                f"could not create repository {params.identifier}: {exc}"
            ) from exc

        owner = created.owner or params.organization
        name = created.name or params.name
        repo = InitializedRepo(
            owner=owner,
            name=name,
            clone_url=created.clone_url or f"{github_web_url()}/{owner}/{name}.git",
            html_url=created.html_url or f"{github_web_url()}/{owner}/{name}",
            default_branch=created.default_branch or default_branch(),
            created_at=created.created_at or now_iso(),
        )
        logger.info("GitHub repo created: %s", repo.full_name)
        logger.info("%s", json.dumps(repository_created_event(repo), sort_keys=True))
        return repo

    def clone(self, repo: InitializedRepo) -> str:
        try:
            return self._source.clone(repo)
        except (subprocess.SubprocessError, OSError, ValueError) as exc:
            raise WorkingCopyFailed(
                f"could not clone {repo.full_name}: {describe_failure(exc)}", repo=repo
            ) from exc

    def fetch_file_content(self, identifier: str, path: str) -> str | None:
        """Read a file straight from the remote default branch."""
        try:
            return self.client().get_file_content(identifier, path)
        except GitHubError as exc:
            raise UpstreamUnavailable(
                f"could not read {path} from {identifier}: {exc}"
            ) from exc
