"""Local working copies: paths, file I/O and git plumbing.

Every project owns one working copy at ``<projects_root>/<owner>/<name>``;
concurrent requests for distinct projects never share a directory.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from contextlib import suppress

from securescaffold.config import (
    command_timeout_seconds,
    git_commit_author_email,
    git_commit_author_name,
    git_push_enabled,
    github_token,
    projects_root,
)
from securescaffold.projects.models import InitializedRepo, SourceFile, sha256_bytes
from securescaffold.source.runner import CommandRunner, SubprocessRunner, git_auth_env

logger = logging.getLogger(__name__)


def _sanitize_dir_name(name: str) -> str:
    s = (name or "").strip().lower()
    s = re.sub(r"[^a-z0-9_.-]+", "-", s)
    s = s.strip("-.")
    return s or "project"


def resolve_inside(working_copy: str, rel_path: str) -> str:
    """Join ``rel_path`` onto the working copy, refusing to escape it."""
    root = os.path.realpath(working_copy)
    target = os.path.realpath(os.path.join(root, rel_path))
    if target != root and not target.startswith(root + os.sep):
        raise ValueError(f"path escapes working copy: {rel_path}")
    return target


def atomic_write_bytes(path: str, data: bytes) -> None:
    """Write via temp file + rename so readers never see a partial file."""
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=parent, prefix=f".{os.path.basename(path)}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        with suppress(OSError):
            os.unlink(tmp_path)
        raise


class SourceService:
    def __init__(
        self,
        *,
        root: str | None = None,
        runner: CommandRunner | None = None,
        push: bool | None = None,
        timeout: float | None = None,
    ) -> None:
        self._root = root or projects_root()
        self._runner = runner or SubprocessRunner()
        self._push = git_push_enabled() if push is None else push
        self._timeout = timeout or command_timeout_seconds()

    @property
    def push_enabled(self) -> bool:
        return self._push

    def working_copy_path(self, identifier: str) -> str:
        owner, _, name = (identifier or "").partition("/")
        return os.path.join(self._root, _sanitize_dir_name(owner), _sanitize_dir_name(name))

    def _git(
        self,
        args: list[str],
        *,
        cwd: str | None,
        env: dict[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return self._runner.run(
            ["git", *args], cwd=cwd, env=env, check=check, timeout=self._timeout
        )

    def clone(self, repo: InitializedRepo) -> str:
        """Clone ``repo`` into its working copy and check out the default branch.

        An existing clone is reused. Raises on any git failure or timeout.
        """
        path = self.working_copy_path(repo.full_name)
        branch = repo.default_branch or "main"
        os.makedirs(os.path.dirname(path), exist_ok=True)

        with git_auth_env(token=github_token()) as env:
            if not os.path.isdir(os.path.join(path, ".git")):
                if os.path.exists(path):
                    if os.listdir(path):
                        raise FileExistsError(f"working copy path is not empty: {path}")
                    shutil.rmtree(path)
                self._git(["clone", repo.clone_url, path], cwd=None, env=env)
                logger.info("Cloned %s into %s", repo.full_name, path)

            heads = self._git(["ls-remote", "--heads", "origin", branch], cwd=path, env=env)
            if (heads.stdout or "").strip():
                self._git(["fetch", "origin", branch], cwd=path, env=env)
                self._git(["checkout", "-B", branch, f"origin/{branch}"], cwd=path, env=env)
            else:
                # Empty remote: point HEAD at the (unborn) default branch.
                self._git(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], cwd=path, env=env)
        return path

    def write_file(self, working_copy: str, rel_path: str, content: str) -> None:
        target = resolve_inside(working_copy, rel_path)
        atomic_write_bytes(target, content.encode("utf-8"))
        logger.debug("Wrote %s", target)

    def read_bytes(self, working_copy: str, rel_path: str) -> bytes:
        target = resolve_inside(working_copy, rel_path)
        with open(target, "rb") as fh:
            return fh.read()

    def read_file(self, working_copy: str, rel_path: str) -> str:
        return self.read_bytes(working_copy, rel_path).decode("utf-8")

    def rehash(
        self, working_copy: str, files: tuple[SourceFile, ...]
    ) -> tuple[tuple[SourceFile, ...], list[str]]:
        """Hash the on-disk state of recorded files.

        Returns the current records (missing files get an empty hash) and the
        paths whose content no longer matches what was recorded.
        """
        current: list[SourceFile] = []
        drifted: list[str] = []
        for f in files:
            try:
                sha = sha256_bytes(self.read_bytes(working_copy, f.path))
            except FileNotFoundError:
                sha = ""
            current.append(SourceFile(path=f.path, sha256=sha))
            if sha != f.sha256:
                drifted.append(f.path)
        return tuple(current), drifted

    def has_head(self, working_copy: str) -> bool:
        cp = self._git(["rev-parse", "--verify", "-q", "HEAD"], cwd=working_copy, check=False)
        return cp.returncode == 0

    def commit(self, working_copy: str, paths: list[str], message: str) -> str | None:
        """Stage ``paths`` and commit them. Returns the new sha, or None if unchanged."""
        self._git(["config", "user.name", git_commit_author_name()], cwd=working_copy)
        self._git(["config", "user.email", git_commit_author_email()], cwd=working_copy)
        if paths:
            self._git(["add", "-A", "--", *paths], cwd=working_copy)
        staged = self._git(["diff", "--cached", "--quiet"], cwd=working_copy, check=False)
        if staged.returncode == 0:
            return None
        self._git(["commit", "-m", message], cwd=working_copy)
        sha = self._git(["rev-parse", "HEAD"], cwd=working_copy).stdout.strip() or None
        logger.info("Committed %s in %s", sha, working_copy)
        return sha

    def push(self, working_copy: str, branch: str) -> None:
        if not self._push:
            logger.debug("Push disabled; keeping commits local in %s", working_copy)
            return
        with git_auth_env(token=github_token()) as env:
            cp: subprocess.CompletedProcess[str] | None = None
            # Push with simple rebase retry.
            for _attempt in range(3):
                cp = self._git(
                    ["push", "origin", f"HEAD:refs/heads/{branch}"],
                    cwd=working_copy,
                    env=env,
                    check=False,
                )
                if cp.returncode == 0:
                    logger.info("Pushed %s to origin/%s", working_copy, branch)
                    return
                self._git(
                    ["pull", "--rebase", "origin", branch], cwd=working_copy, env=env, check=False
                )
        detail = (cp.stderr or cp.stdout) if cp is not None else ""
        raise RuntimeError(f"git push failed: {detail}")

    def undo_last_commit(self, working_copy: str) -> None:
        """Drop the last local commit but keep its changes staged."""
        parent = self._git(
            ["rev-parse", "--verify", "-q", "HEAD~1"], cwd=working_copy, check=False
        )
        if parent.returncode == 0:
            self._git(["reset", "--soft", "HEAD~1"], cwd=working_copy)
        else:
            self._git(["update-ref", "-d", "HEAD"], cwd=working_copy)

    def unstage(self, working_copy: str, rel_path: str) -> None:
        if self.has_head(working_copy):
            self._git(["reset", "-q", "HEAD", "--", rel_path], cwd=working_copy, check=False)
        else:
            self._git(
                ["rm", "--cached", "-q", "--ignore-unmatch", "--", rel_path],
                cwd=working_copy,
                check=False,
            )
