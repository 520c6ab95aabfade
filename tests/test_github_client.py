import base64

import pytest
import requests

from securescaffold.github.client import GitHubClient, GitHubError


class _Resp:
    def __init__(self, status_code: int, data=None, text: str = "", content: bytes = b""):
        self.status_code = status_code
        self._data = data
        self.text = text
        self.content = content

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


class _Sess:
    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def request(self, method, url, headers=None, json=None, timeout=None):
        self.calls.append((method, url, headers, json, timeout))
        key = (method, url)
        if key not in self.routes:
            return _Resp(404, {"message": "Not Found"}, text="Not Found")
        resp = self.routes[key]
        if callable(resp):
            return resp(method, url, json)
        return resp


_REPO = {
    "id": 7,
    "name": "demo",
    "full_name": "acme/demo",
    "owner": {"login": "acme"},
    "html_url": "https://github.com/acme/demo",
    "clone_url": "https://github.com/acme/demo.git",
    "default_branch": "main",
    "created_at": "2024-03-01T12:00:00Z",
}


def _client(monkeypatch, routes):
    monkeypatch.setenv("GITHUB_TOKEN", "t")
    monkeypatch.setenv("GITHUB_API_URL", "https://api.example/")
    s = _Sess(routes)
    return GitHubClient.from_env(session=s), s


def test_from_env_requires_token(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    with pytest.raises(GitHubError):
        GitHubClient.from_env(session=_Sess({}))


def test_create_repo_in_org(monkeypatch):
    gh, s = _client(monkeypatch, {("POST", "https://api.example/orgs/acme/repos"): _Resp(201, _REPO)})
    repo = gh.create_repo(owner="acme", name="demo", description="d", private=True)
    assert repo.full_name == "acme/demo"
    assert repo.owner == "acme"
    assert repo.default_branch == "main"
    method, url, headers, body, timeout = s.calls[0]
    assert headers["Authorization"] == "Bearer t"
    assert body["private"] is True
    assert body["name"] == "demo"
    assert timeout == 30.0


def test_create_repo_for_user_uses_user_endpoint(monkeypatch):
    gh, s = _client(monkeypatch, {("POST", "https://api.example/user/repos"): _Resp(201, _REPO)})
    gh.create_repo(owner="someone", name="demo", owner_is_org=False)
    assert s.calls[0][1] == "https://api.example/user/repos"


def test_create_repo_name_taken(monkeypatch):
    gh, _ = _client(
        monkeypatch,
        {
            ("POST", "https://api.example/orgs/acme/repos"): _Resp(
                422, {"message": "Repository creation failed."}
            )
        },
    )
    with pytest.raises(GitHubError) as e:
        gh.create_repo(owner="acme", name="demo")
    assert e.value.status_code == 422
    assert e.value.payload["message"] == "Repository creation failed."


def test_network_error_becomes_github_error(monkeypatch):
    def _boom(*_args):
        raise requests.ConnectionError("unreachable")

    gh, _ = _client(monkeypatch, {("GET", "https://api.example/repos/acme/demo"): _boom})
    with pytest.raises(GitHubError) as e:
        gh.get_repo("acme/demo")
    assert e.value.status_code is None


def test_get_repo_missing_returns_none(monkeypatch):
    gh, _ = _client(monkeypatch, {})
    assert gh.get_repo("acme/missing") is None


def test_branch_protection_put_sends_rules(monkeypatch):
    url = "https://api.example/repos/acme/demo/branches/main/protection"
    gh, s = _client(
        monkeypatch,
        {("PUT", url): _Resp(200, {"enforce_admins": {"enabled": True}})},
    )
    out = gh.put_branch_protection(
        "acme/demo", branch="main", rules={"enforce_admins": True}
    )
    assert out == {"enforce_admins": {"enabled": True}}
    assert s.calls[0][3] == {"enforce_admins": True}


def test_vulnerability_reporting_empty_body(monkeypatch):
    url = "https://api.example/repos/acme/demo/private-vulnerability-reporting"
    gh, _ = _client(
        monkeypatch,
        {
            ("PUT", url): _Resp(204, None),
            ("GET", url): _Resp(200, {"enabled": True}),
        },
    )
    gh.enable_vulnerability_reporting("acme/demo")
    assert gh.get_vulnerability_reporting("acme/demo") is True


def test_get_file_content_decodes_base64(monkeypatch):
    url = "https://api.example/repos/acme/demo/contents/.securescaffold.json"
    payload = {"encoding": "base64", "content": base64.b64encode(b'{"a": 1}\n').decode()}
    gh, _ = _client(monkeypatch, {("GET", url): _Resp(200, payload)})
    assert gh.get_file_content("acme/demo", ".securescaffold.json") == '{"a": 1}\n'
    assert gh.get_file_content("acme/demo", "missing.txt") is None


def test_latest_release_assets(monkeypatch):
    url = "https://api.example/repos/acme/demo/releases/latest"
    gh, _ = _client(
        monkeypatch,
        {
            ("GET", url): _Resp(
                200,
                {
                    "id": 3,
                    "tag_name": "v1.0.0",
                    "name": "v1.0.0",
                    "assets": [
                        {
                            "id": 11,
                            "name": "demo.spdx.json",
                            "url": "https://api.example/repos/acme/demo/releases/assets/11",
                            "browser_download_url": "https://github.com/acme/demo/releases/download/v1.0.0/demo.spdx.json",
                            "content_type": "application/json",
                        }
                    ],
                },
            )
        },
    )
    rel = gh.get_release("acme/demo")
    assert rel is not None
    assert rel.tag_name == "v1.0.0"
    assert [a.name for a in rel.assets] == ["demo.spdx.json"]


def test_download_asset_returns_bytes(monkeypatch):
    url = "https://api.example/repos/acme/demo/releases/assets/11"
    gh, s = _client(monkeypatch, {("GET", url): _Resp(200, None, content=b"payload")})
    assert gh.download_asset("acme/demo", 11) == b"payload"
    assert s.calls[0][2]["Accept"] == "application/octet-stream"
