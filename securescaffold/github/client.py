from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

import requests

from securescaffold.config import api_timeout_seconds, github_api_url, github_token


class GitHubError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


@dataclass(frozen=True)
class GitHubRepo:
    id: int
    name: str
    full_name: str
    owner: str
    html_url: str
    clone_url: str
    default_branch: str
    created_at: str


@dataclass(frozen=True)
class GitHubAsset:
    id: int
    name: str
    url: str
    browser_download_url: str
    content_type: str


@dataclass(frozen=True)
class GitHubRelease:
    id: int
    tag_name: str
    name: str
    assets: tuple[GitHubAsset, ...]


class GitHubClient:
    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._token = token
        self._http = session or requests.Session()
        self._timeout = timeout

    @classmethod
    def from_env(cls, *, session: requests.Session | None = None) -> GitHubClient:
        token = github_token()
        if not token:
            raise GitHubError("GITHUB_TOKEN is not set")
        return cls(
            base_url=github_api_url(),
            token=token,
            session=session,
            timeout=api_timeout_seconds(),
        )

    def _headers(self, *, accept: str = "application/vnd.github+json") -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": accept,
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _url(self, path: str) -> str:
        return f"{self._base}{path}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        accept: str = "application/vnd.github+json",
        raw: bool = False,
    ) -> Any:
        try:
            res = self._http.request(
                method,
                self._url(path),
                headers=self._headers(accept=accept),
                json=json_body,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise GitHubError(f"GitHub request failed for {method} {path}: {exc}") from exc
        if res.status_code == 404:
            return None
        if res.status_code >= 400:
            text = res.text
            payload: Any
            try:
                payload = res.json()
            except Exception:
                payload = {"raw": text}
            raise GitHubError(
                f"GitHub API error {res.status_code} for {method} {path}",
                status_code=res.status_code,
                payload=payload,
            )
        if raw:
            return res.content
        if res.status_code == 204:
            return {}
        # Several settings endpoints answer with an empty body.
        try:
            return res.json()
        except Exception:
            return {}

    def create_repo(
        self,
        *,
        owner: str,
        name: str,
        description: str = "",
        private: bool = False,
        owner_is_org: bool = True,
    ) -> GitHubRepo:
        path = f"/orgs/{owner}/repos" if owner_is_org else "/user/repos"
        data = self._request(
            "POST",
            path,
            json_body={
                "name": name,
                "description": description,
                "private": private,
                "has_issues": True,
                "has_projects": True,
                "has_wiki": True,
            },
        )
        if data is None:
            raise GitHubError(f"GitHub owner not found: {owner}", status_code=404)
        return self._parse_repo(data)

    def get_repo(self, full_name: str) -> GitHubRepo | None:
        data = self._request("GET", f"/repos/{full_name}")
        if data is None:
            return None
        return self._parse_repo(data)

    def put_branch_protection(
        self, full_name: str, *, branch: str, rules: dict[str, Any]
    ) -> dict[str, Any]:
        path = f"/repos/{full_name}/branches/{branch}/protection"
        data = self._request("PUT", path, json_body=rules)
        if data is None:
            raise GitHubError(f"Branch not found: {full_name}@{branch}", status_code=404)
        return data if isinstance(data, dict) else {}

    def get_branch_protection(self, full_name: str, *, branch: str) -> dict[str, Any] | None:
        data = self._request("GET", f"/repos/{full_name}/branches/{branch}/protection")
        return data if isinstance(data, dict) else None

    def enable_signed_commits(self, full_name: str, *, branch: str) -> dict[str, Any]:
        path = f"/repos/{full_name}/branches/{branch}/protection/required_signatures"
        data = self._request("POST", path)
        if data is None:
            raise GitHubError(
                f"Branch protection missing for {full_name}@{branch}", status_code=404
            )
        return data if isinstance(data, dict) else {}

    def get_signed_commits(self, full_name: str, *, branch: str) -> bool:
        path = f"/repos/{full_name}/branches/{branch}/protection/required_signatures"
        data = self._request("GET", path)
        return bool(isinstance(data, dict) and data.get("enabled"))

    def enable_vulnerability_reporting(self, full_name: str) -> None:
        data = self._request("PUT", f"/repos/{full_name}/private-vulnerability-reporting")
        if data is None:
            raise GitHubError(f"Repository not found: {full_name}", status_code=404)

    def get_vulnerability_reporting(self, full_name: str) -> bool:
        data = self._request("GET", f"/repos/{full_name}/private-vulnerability-reporting")
        return bool(isinstance(data, dict) and data.get("enabled"))

    def get_file_content(self, full_name: str, path: str, *, ref: str | None = None) -> str | None:
        suffix = f"?ref={ref}" if ref else ""
        data = self._request("GET", f"/repos/{full_name}/contents/{path.lstrip('/')}{suffix}")
        if data is None:
            return None
        if not isinstance(data, dict) or data.get("encoding") != "base64":
            raise GitHubError("Unexpected GitHub contents response", payload=data)
        try:
            return base64.b64decode(str(data.get("content") or "")).decode("utf-8")
        except Exception as exc:
            raise GitHubError(
                "Failed to decode GitHub file content",
                payload={"path": path, "error": str(exc)},
            ) from exc

    def get_release(self, full_name: str, *, tag: str | None = None) -> GitHubRelease | None:
        path = (
            f"/repos/{full_name}/releases/tags/{tag}"
            if tag
            else f"/repos/{full_name}/releases/latest"
        )
        data = self._request("GET", path)
        if data is None:
            return None
        return self._parse_release(data)

    def download_asset(self, full_name: str, asset_id: int) -> bytes | None:
        return self._request(
            "GET",
            f"/repos/{full_name}/releases/assets/{int(asset_id)}",
            accept="application/octet-stream",
            raw=True,
        )

    @staticmethod
    def _parse_repo(data: Any) -> GitHubRepo:
        if not isinstance(data, dict):
            raise GitHubError("Unexpected GitHub repository response", payload=data)
        try:
            owner = data.get("owner") or {}
            return GitHubRepo(
                id=int(data["id"]),
                name=str(data.get("name") or ""),
                full_name=str(data.get("full_name") or ""),
                owner=str(owner.get("login") or "") if isinstance(owner, dict) else "",
                html_url=str(data.get("html_url") or ""),
                clone_url=str(data.get("clone_url") or ""),
                default_branch=str(data.get("default_branch") or ""),
                created_at=str(data.get("created_at") or ""),
            )
        except Exception as exc:
            raise GitHubError(
                "Failed to parse GitHub repository payload",
                payload={"data": data, "error": str(exc)},
            ) from exc

    @staticmethod
    def _parse_release(data: Any) -> GitHubRelease:
        if not isinstance(data, dict):
            raise GitHubError("Unexpected GitHub release response", payload=data)
        try:
            assets = tuple(
                GitHubAsset(
                    id=int(a["id"]),
                    name=str(a.get("name") or ""),
                    url=str(a.get("url") or ""),
                    browser_download_url=str(a.get("browser_download_url") or ""),
                    content_type=str(a.get("content_type") or ""),
                )
                for a in data.get("assets") or []
                if isinstance(a, dict)
            )
            return GitHubRelease(
                id=int(data["id"]),
                tag_name=str(data.get("tag_name") or ""),
                name=str(data.get("name") or ""),
                assets=assets,
            )
        except Exception as exc:
            raise GitHubError(
                "Failed to parse GitHub release payload",
                payload={"data": data, "error": str(exc)},
            ) from exc
