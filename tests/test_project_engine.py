import json
import os
import subprocess
import threading

import pytest

from securescaffold.errors import (
    DriftDetected,
    EcosystemBootstrapFailed,
    FacetNotFound,
    PersistenceFailed,
    UpstreamUnavailable,
    WorkingCopyFailed,
)
from securescaffold.facets.catalog import declared_order
from securescaffold.github.client import GitHubError
from securescaffold.projects.engine import CreationState
from securescaffold.projects.models import (
    EcosystemFacet,
    FacetKind,
    FailedFacet,
    ProjectParams,
    ProjectStatus,
    SourceBundleFacet,
    sha256_bytes,
)
from securescaffold.projects.state_store import STATE_FILE, encode_project
from securescaffold.source.service import SourceService


def _git(args, *, cwd):
    cp = subprocess.run(["git", *args], cwd=cwd, text=True, capture_output=True, check=True)
    return (cp.stdout or "").strip()


def _params(name="demo", language="go"):
    return ProjectParams(name=name, organization="acme", language=language, description="Demo")


def test_demo_scenario_end_to_end(make_engine, fake_github, tmp_path):
    engine = make_engine()
    result = engine.create(_params(), ["license", "security_policy"])
    project = result.project

    assert project.repo.name == "demo"
    assert project.status == ProjectStatus.COMPLETE
    assert result.warnings == ()
    assert result.state_trail == (
        CreationState.REQUESTED,
        CreationState.REPO_CREATING,
        CreationState.ECOSYSTEM_INITIALIZING,
        CreationState.APPLYING_FACETS,
        CreationState.PUBLISHING,
        CreationState.AGGREGATING,
        CreationState.PERSISTED,
        CreationState.COMPLETE,
    )

    eco, lic, pol = project.facets
    assert isinstance(eco, EcosystemFacet)
    assert eco.module == "github.com/acme/demo"
    assert [lic.kind, pol.kind] == [FacetKind.LICENSE, FacetKind.SECURITY_POLICY]

    wc = tmp_path / "projects" / "acme" / "demo"
    for rec in (lic, pol):
        assert isinstance(rec, SourceBundleFacet)
        f = rec.files[0]
        assert f.sha256 == sha256_bytes((wc / f.path).read_bytes())

    assert (wc / STATE_FILE).read_text(encoding="utf-8") == encode_project(project)
    entry = engine.store.index.get("acme/demo")
    assert entry is not None and entry.local_path == str(wc)

    bare = str(fake_github.remotes_dir / "acme" / "demo.git")
    files = _git(["ls-tree", "-r", "--name-only", "main"], cwd=bare).splitlines()
    assert sorted(files) == sorted([".securescaffold.json", "LICENSE", "SECURITY.md", "go.mod"])
    subjects = _git(["log", "--format=%s", "main"], cwd=bare).splitlines()
    assert subjects[-1] == "Initialize secure project scaffold"


def test_default_facets_cover_whole_catalog_for_go(make_engine, fake_github):
    engine = make_engine()
    project = engine.create(_params()).project

    kinds = [f.kind for f in project.facets]
    assert kinds == declared_order(kinds)
    assert kinds[0] == FacetKind.ECOSYSTEM
    assert FacetKind.BRANCH_PROTECTION in kinds
    assert project.status == ProjectStatus.COMPLETE
    assert "acme/demo" in fake_github.protection
    assert "acme/demo" in fake_github.vuln_reporting


def test_api_facets_run_after_scaffold_is_pushed(make_engine, fake_github):
    seen = {}

    def _put(full_name, *, branch, rules):
        bare = str(fake_github.remotes_dir / "acme" / "demo.git")
        seen["refs"] = _git(["for-each-ref", "--format=%(refname)"], cwd=bare)
        return {}

    engine = make_engine()
    fake_github.put_branch_protection = _put
    engine.create(_params(), ["readme", "branch_protection"])
    assert seen["refs"] == "refs/heads/main"


def test_partial_failure_keeps_every_outcome_in_order(make_engine, fake_github, monkeypatch):
    import securescaffold.facets.service as facet_service

    real = facet_service.SourceBundleHandler.initialize

    def _flaky(self, ctx):
        if self.kind in (FacetKind.GITIGNORE, FacetKind.SECURITY_INSIGHTS):
            raise RuntimeError(f"{self.kind.value} exploded")
        return real(self, ctx)

    monkeypatch.setattr(facet_service.SourceBundleHandler, "initialize", _flaky)
    engine = make_engine()
    result = engine.create(
        _params(),
        ["security_policy", "gitignore", "readme", "security_insights", "license"],
    )
    project = result.project

    assert project.status == ProjectStatus.PARTIALLY_FAILED
    assert result.state_trail[-1] == CreationState.PARTIALLY_FAILED
    assert [f.kind for f in project.facets] == [
        FacetKind.ECOSYSTEM,
        FacetKind.README,
        FacetKind.LICENSE,
        FacetKind.GITIGNORE,
        FacetKind.SECURITY_POLICY,
        FacetKind.SECURITY_INSIGHTS,
    ]
    failed = {f.kind: f.error for f in project.failures}
    assert failed == {
        FacetKind.GITIGNORE: "gitignore exploded",
        FacetKind.SECURITY_INSIGHTS: "security_insights exploded",
    }
    ok = [f for f in project.facets if isinstance(f, SourceBundleFacet)]
    assert len(ok) == 3
    assert len(result.warnings) == 2
    persisted = json.loads(
        open(os.path.join(engine.store.index.get("acme/demo").local_path, STATE_FILE)).read()
    )
    assert [f["variant"] for f in persisted["facets"]].count("failed") == 2


def test_repo_creation_failure_persists_nothing(make_engine, fake_github):
    fake_github.fail["create_repo"] = GitHubError("bad credentials", status_code=401)
    engine = make_engine()
    with pytest.raises(UpstreamUnavailable):
        engine.create(_params())
    assert engine.list() == []


def test_clone_failure_reports_orphaned_remote(make_engine, fake_github, tmp_path):
    blocker = tmp_path / "projects" / "acme" / "demo"
    blocker.mkdir(parents=True)
    (blocker / "stray.txt").write_text("x", encoding="utf-8")

    engine = make_engine()
    with pytest.raises(WorkingCopyFailed) as e:
        engine.create(_params())
    assert e.value.repo.full_name == "acme/demo"
    assert "acme/demo" in e.value.advice
    assert engine.list() == []


def test_ecosystem_failure_is_fatal(make_engine, go_runner):
    go_runner.fail = True
    engine = make_engine()
    with pytest.raises(EcosystemBootstrapFailed):
        engine.create(_params())
    assert engine.list() == []


def test_publish_failure_is_persistence_failure(make_engine, fake_github, monkeypatch):
    engine = make_engine()

    def _no_push(self, working_copy, branch):
        raise RuntimeError("git push failed: denied")

    monkeypatch.setattr(SourceService, "push", _no_push)
    with pytest.raises(PersistenceFailed):
        engine.create(_params())
    assert engine.list() == []
    assert "put_branch_protection" not in [c[0] for c in fake_github.calls]


def test_unknown_facet_kind_is_rejected_before_anything_happens(make_engine, fake_github):
    engine = make_engine()
    with pytest.raises(ValueError):
        engine.create(_params(), ["license", "telemetry"])
    assert fake_github.calls == []


def test_get_facet_reports_drift(make_engine, tmp_path):
    engine = make_engine()
    engine.create(_params(), ["license", "security_policy"])

    rec = engine.get_facet("acme/demo", FacetKind.LICENSE)
    assert isinstance(rec, SourceBundleFacet)

    (tmp_path / "projects" / "acme" / "demo" / "LICENSE").write_text("MIT\n", encoding="utf-8")
    with pytest.raises(DriftDetected) as e:
        engine.get_facet("acme/demo", FacetKind.LICENSE)
    assert e.value.paths == ["LICENSE"]

    with pytest.raises(FacetNotFound):
        engine.get_facet("acme/demo", FacetKind.FUZZING)


def test_archive_scenario_leaves_facets_identical(make_engine):
    engine = make_engine()
    project = engine.create(_params(), ["license", "security_policy"]).project
    before = [f.to_dict() for f in project.facets]

    archived = engine.archive("acme/demo")

    assert archived.status == ProjectStatus.ARCHIVED
    assert [f.to_dict() for f in archived.facets] == before
    assert archived.updated_at == project.updated_at
    assert engine.get("acme/demo") == archived


def test_update_reapplies_only_named_facets(make_engine, tmp_path, monkeypatch):
    import securescaffold.facets.service as facet_service

    real = facet_service.SourceBundleHandler.initialize

    def _fail_readme(self, ctx):
        if self.kind == FacetKind.README:
            raise RuntimeError("readme exploded")
        return real(self, ctx)

    monkeypatch.setattr(facet_service.SourceBundleHandler, "initialize", _fail_readme)
    engine = make_engine()
    created = engine.create(_params(), ["readme", "license"]).project
    assert created.status == ProjectStatus.PARTIALLY_FAILED

    monkeypatch.setattr(facet_service.SourceBundleHandler, "initialize", real)
    updated = engine.update("acme/demo", ["readme", "scorecard"])

    assert updated.status == ProjectStatus.COMPLETE
    assert [f.kind for f in updated.facets] == [
        FacetKind.ECOSYSTEM,
        FacetKind.README,
        FacetKind.LICENSE,
        FacetKind.SCORECARD,
    ]
    assert updated.facet(FacetKind.LICENSE) == created.facet(FacetKind.LICENSE)
    assert not isinstance(updated.facet(FacetKind.README), FailedFacet)

    wc = str(tmp_path / "projects" / "acme" / "demo")
    tracked = _git(["ls-files"], cwd=wc).splitlines()
    assert ".github/workflows/scorecard.yml" in tracked
    assert "README.md" in tracked


def test_concurrent_creates_use_separate_working_copies(make_engine, tmp_path):
    engine = make_engine()
    results = {}
    errors = []

    def _create(name):
        try:
            results[name] = engine.create(_params(name=name), ["license"])
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=_create, args=(f"svc-{i}",)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(e.identifier for e in engine.list()) == [f"acme/svc-{i}" for i in range(4)]
    for i in range(4):
        assert (tmp_path / "projects" / "acme" / f"svc-{i}" / STATE_FILE).is_file()


def test_outputs_classify_sboms(make_engine, fake_github):
    engine = make_engine()
    engine.create(_params(), ["license"])
    fake_github.add_release(
        "acme/demo", {"demo.spdx.json": b"{}", "demo_linux_amd64.tar.gz": b"bin"}
    )

    outputs = engine.list_outputs("acme/demo")
    assert {o.name: o.output_type for o in outputs} == {
        "demo.spdx.json": "sbom",
        "demo_linux_amd64.tar.gz": "custom",
    }
    assert [o.name for o in engine.list_outputs("acme/demo", output_type="sbom")] == [
        "demo.spdx.json"
    ]
    assert engine.get_output("acme/demo", "demo.spdx.json") == b"{}"


def test_api_facets_together_do_not_report_drift(make_engine, fake_github):
    engine = make_engine()
    project = engine.create(_params(), ["branch_protection", "signed_commits"]).project
    assert project.status == ProjectStatus.COMPLETE

    assert engine.get_facet("acme/demo", FacetKind.BRANCH_PROTECTION).kind == (
        FacetKind.BRANCH_PROTECTION
    )
    assert engine.get_facet("acme/demo", FacetKind.SIGNED_COMMITS).kind == (
        FacetKind.SIGNED_COMMITS
    )

    fake_github.signatures.clear()
    with pytest.raises(DriftDetected):
        engine.get_facet("acme/demo", FacetKind.SIGNED_COMMITS)
    engine.get_facet("acme/demo", FacetKind.BRANCH_PROTECTION)


def test_update_can_rerun_ecosystem_bootstrap(make_engine, go_runner, tmp_path):
    engine = make_engine()
    created = engine.create(_params(), ["license"]).project
    assert len(go_runner.calls) == 1

    same = engine.update("acme/demo", ["ecosystem"])
    assert len(go_runner.calls) == 1
    assert same.facet(FacetKind.ECOSYSTEM) == created.facet(FacetKind.ECOSYSTEM)

    wc = tmp_path / "projects" / "acme" / "demo"
    (wc / "go.mod").unlink()
    with pytest.raises(DriftDetected):
        engine.get_facet("acme/demo", FacetKind.ECOSYSTEM)

    rebuilt = engine.update("acme/demo", ["ecosystem"])
    assert len(go_runner.calls) == 2
    assert [f.kind for f in rebuilt.facets] == [FacetKind.ECOSYSTEM, FacetKind.LICENSE]
    assert engine.get_facet("acme/demo", FacetKind.ECOSYSTEM) == rebuilt.facet(FacetKind.ECOSYSTEM)
    assert "go.mod" in _git(["ls-files"], cwd=str(wc)).splitlines()


def test_update_with_no_kinds_is_rejected(make_engine):
    engine = make_engine()
    engine.create(_params(), ["license"])
    with pytest.raises(ValueError):
        engine.update("acme/demo", [])
