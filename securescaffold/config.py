from __future__ import annotations

import os


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def _env_float(name: str, *, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        v = float(raw)
    except ValueError:
        return default
    return v if v > 0 else default


def _home_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".securescaffold")


def github_api_url() -> str:
    return (
        (os.environ.get("GITHUB_API_URL") or "https://api.github.com")
        .strip()
        .rstrip("/")
    )


def github_web_url() -> str:
    return (
        (os.environ.get("GITHUB_WEB_URL") or "https://github.com").strip().rstrip("/")
    )


def github_token() -> str:
    return (os.environ.get("GITHUB_TOKEN") or "").strip()


def projects_root() -> str:
    return (
        os.environ.get("SECURESCAFFOLD_PROJECTS_ROOT")
        or os.path.join(_home_dir(), "projects")
    ).strip()


def index_path() -> str:
    return (
        os.environ.get("SECURESCAFFOLD_INDEX_PATH")
        or os.path.join(_home_dir(), "index.json")
    ).strip()


def default_branch() -> str:
    return (os.environ.get("SECURESCAFFOLD_DEFAULT_BRANCH") or "main").strip() or "main"


def git_push_enabled() -> bool:
    # Disable to keep commits local (offline use, tests).
    return _env_bool("SECURESCAFFOLD_GIT_PUSH", default=True)


def api_timeout_seconds() -> float:
    return _env_float("SECURESCAFFOLD_API_TIMEOUT", default=30.0)


def command_timeout_seconds() -> float:
    return _env_float("SECURESCAFFOLD_COMMAND_TIMEOUT", default=300.0)


def git_commit_author_name() -> str:
    return (
        os.environ.get("SECURESCAFFOLD_GIT_COMMIT_AUTHOR_NAME") or "securescaffold-bot"
    ).strip() or "securescaffold-bot"


def git_commit_author_email() -> str:
    return (
        os.environ.get("SECURESCAFFOLD_GIT_COMMIT_AUTHOR_EMAIL")
        or "securescaffold@users.noreply.github.com"
    ).strip() or "securescaffold@users.noreply.github.com"


def default_facet_kinds() -> list[str] | None:
    """Comma-separated facet kinds to apply when a request names none.

    Returns None when unset so callers fall back to the catalog defaults.
    """
    raw = (os.environ.get("SECURESCAFFOLD_FACETS") or "").strip()
    if not raw:
        return None
    parts = [p.strip().lower() for p in raw.split(",") if p.strip()]
    return parts or None


def log_level() -> str:
    v = (os.environ.get("SECURESCAFFOLD_LOG_LEVEL") or "WARNING").strip().upper()
    return v if v in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL") else "WARNING"
