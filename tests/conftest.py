import os
import subprocess
import sys
from pathlib import Path

import pytest

# Ensure the repo root is on sys.path so tests can import the local `securescaffold/` package.
ROOT = str(Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from securescaffold.github.client import GitHubAsset, GitHubRelease, GitHubRepo  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_tool_state(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # Never touch ~/.securescaffold or a real GitHub account from unit tests.
    monkeypatch.setenv("SECURESCAFFOLD_PROJECTS_ROOT", str(tmp_path / "projects"))
    monkeypatch.setenv("SECURESCAFFOLD_INDEX_PATH", str(tmp_path / "index.json"))
    monkeypatch.delenv("SECURESCAFFOLD_FACETS", raising=False)
    monkeypatch.delenv("SECURESCAFFOLD_GIT_PUSH", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


class FakeGitHub:
    """In-memory stand-in for GitHubClient backed by local bare repositories."""

    def __init__(self, remotes_dir: Path) -> None:
        self.remotes_dir = remotes_dir
        self.calls: list[tuple] = []
        self.protection: dict[str, dict] = {}
        self.signatures: set[str] = set()
        self.vuln_reporting: set[str] = set()
        self.files: dict[tuple[str, str], str] = {}
        self.releases: dict[str, GitHubRelease] = {}
        self.assets: dict[int, bytes] = {}
        self.fail: dict[str, Exception] = {}

    def _maybe_fail(self, name: str) -> None:
        self.calls.append((name,))
        if name in self.fail:
            raise self.fail[name]

    def create_repo(self, *, owner, name, description="", private=False, owner_is_org=True):
        self._maybe_fail("create_repo")
        bare = self.remotes_dir / owner / f"{name}.git"
        bare.parent.mkdir(parents=True, exist_ok=True)
        subprocess.run(["git", "init", "--bare", str(bare)], check=True, capture_output=True)
        return GitHubRepo(
            id=1,
            name=name,
            full_name=f"{owner}/{name}",
            owner=owner,
            html_url=f"https://github.com/{owner}/{name}",
            clone_url=str(bare),
            default_branch="main",
            created_at="2024-03-01T12:00:00Z",
        )

    def _protection_payload(self, full_name, branch):
        # Same shape as GitHub: every toggle, including ones other facets own.
        rules = self.protection[full_name]
        url = f"https://api.github.com/repos/{full_name}/branches/{branch}/protection"
        return {
            "url": url,
            "required_signatures": {
                "url": f"{url}/required_signatures",
                "enabled": full_name in self.signatures,
            },
            "enforce_admins": {
                "url": f"{url}/enforce_admins",
                "enabled": rules["enforce_admins"],
            },
            "required_linear_history": {"enabled": rules["required_linear_history"]},
            "allow_force_pushes": {"enabled": rules["allow_force_pushes"]},
            "allow_deletions": {"enabled": rules["allow_deletions"]},
            "block_creations": {"enabled": False},
            "required_conversation_resolution": {"enabled": False},
            "lock_branch": {"enabled": False},
            "allow_fork_syncing": {"enabled": False},
        }

    def put_branch_protection(self, full_name, *, branch, rules):
        self._maybe_fail("put_branch_protection")
        self.protection[full_name] = dict(rules)
        return self._protection_payload(full_name, branch)

    def get_branch_protection(self, full_name, *, branch):
        self._maybe_fail("get_branch_protection")
        if full_name not in self.protection:
            return None
        return self._protection_payload(full_name, branch)

    def enable_signed_commits(self, full_name, *, branch):
        self._maybe_fail("enable_signed_commits")
        self.signatures.add(full_name)
        return {"enabled": True}

    def get_signed_commits(self, full_name, *, branch):
        self._maybe_fail("get_signed_commits")
        return full_name in self.signatures

    def enable_vulnerability_reporting(self, full_name):
        self._maybe_fail("enable_vulnerability_reporting")
        self.vuln_reporting.add(full_name)

    def get_vulnerability_reporting(self, full_name):
        return full_name in self.vuln_reporting

    def get_file_content(self, full_name, path, *, ref=None):
        self._maybe_fail("get_file_content")
        return self.files.get((full_name, path))

    def get_release(self, full_name, *, tag=None):
        self._maybe_fail("get_release")
        return self.releases.get(f"{full_name}@{tag or 'latest'}")

    def download_asset(self, full_name, asset_id):
        return self.assets.get(asset_id)

    def add_release(self, full_name: str, assets: dict[str, bytes], *, tag: str | None = None):
        items = []
        for i, (name, data) in enumerate(assets.items(), start=100):
            items.append(
                GitHubAsset(
                    id=i,
                    name=name,
                    url=f"https://api.github.com/repos/{full_name}/releases/assets/{i}",
                    browser_download_url=f"https://github.com/{full_name}/releases/download/v1/{name}",
                    content_type="application/octet-stream",
                )
            )
            self.assets[i] = data
        self.releases[f"{full_name}@{tag or 'latest'}"] = GitHubRelease(
            id=1, tag_name=tag or "v1", name=tag or "v1", assets=tuple(items)
        )


class GoRunner:
    """Pretends to be the go toolchain: ``go mod init`` writes go.mod."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[list[str]] = []

    def run(self, args, *, cwd=None, env=None, check=True, timeout=None):
        self.calls.append(list(args))
        if self.fail:
            raise subprocess.CalledProcessError(1, args, output="", stderr="go: boom")
        if args[:3] == ["go", "mod", "init"]:
            with open(os.path.join(cwd, "go.mod"), "w", encoding="utf-8") as fh:
                fh.write(f"module {args[3]}\n\ngo 1.22\n")
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")


@pytest.fixture
def fake_github(tmp_path: Path) -> FakeGitHub:
    return FakeGitHub(tmp_path / "remotes")


@pytest.fixture
def go_runner() -> GoRunner:
    return GoRunner()


@pytest.fixture
def make_engine(fake_github: FakeGitHub, go_runner: GoRunner):
    """Engine wired to the fake GitHub, real git, and a fake go toolchain."""
    from securescaffold.ecosystem.service import EcosystemService
    from securescaffold.projects.engine import ProjectEngine
    from securescaffold.repo.service import RepoService
    from securescaffold.source.service import SourceService

    def _make(**source_kwargs):
        source = SourceService(**source_kwargs)
        repo = RepoService(client=fake_github, source=source)  # type: ignore[arg-type]
        eco = EcosystemService(runner=go_runner, source=source)
        return ProjectEngine(repo=repo, ecosystem=eco)

    return _make

