from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol


class CommandRunner(Protocol):
    def run(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]: ...


@dataclass
class SubprocessRunner:
    def run(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            args,
            cwd=cwd,
            env=env,
            text=True,
            capture_output=True,
            check=check,
            timeout=timeout,
        )


def describe_failure(exc: BaseException) -> str:
    """One-line description of a failed command for error messages."""
    if isinstance(exc, subprocess.TimeoutExpired):
        return f"timed out after {exc.timeout:g}s: {' '.join(map(str, exc.cmd))}"
    if isinstance(exc, subprocess.CalledProcessError):
        detail = (exc.stderr or exc.stdout or "").strip()
        cmd = " ".join(map(str, exc.cmd))
        return f"{cmd} exited {exc.returncode}" + (f": {detail}" if detail else "")
    if isinstance(exc, FileNotFoundError):
        return f"command not found: {exc.filename or exc}"
    return str(exc)


@contextmanager
def git_auth_env(*, token: str) -> Iterator[dict[str, str]]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    if not token:
        yield env
        return

    # Use GIT_ASKPASS to avoid embedding tokens in URLs.
    tmpdir = tempfile.mkdtemp(prefix="securescaffold-askpass-")
    script = os.path.join(tmpdir, "askpass.sh")
    content = """#!/bin/sh
case "$1" in
  *Username*) echo "x-access-token" ;;
  *Password*) echo "$SECURESCAFFOLD_GIT_TOKEN" ;;
  *) echo "" ;;
esac
"""
    with open(script, "w", encoding="utf-8") as f:
        f.write(content)
    os.chmod(script, 0o700)

    env["GIT_ASKPASS"] = script
    env["SECURESCAFFOLD_GIT_TOKEN"] = token

    try:
        yield env
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)
