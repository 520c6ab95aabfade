"""File content for file-based facets.

Rendering is a pure function of the project record: the same project always
renders byte-identical files, so re-applying a facet reproduces its hash.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from securescaffold.facets.licenses import render_apache_2_0
from securescaffold.projects.models import EcosystemFacet, InitializedRepo, ProjectParams


@dataclass(frozen=True)
class ContentContext:
    project_name: str
    description: str
    organization: str
    language: str
    repo_url: str
    branch: str
    created_at: datetime
    module: str
    ecosystem_root: str

    @property
    def year(self) -> int:
        return self.created_at.year


def _parse_created_at(raw: str) -> datetime:
    s = (raw or "").strip().replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return datetime(1970, 1, 1, tzinfo=UTC)
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def build_content_context(
    params: ProjectParams,
    repo: InitializedRepo,
    ecosystem: EcosystemFacet | None,
) -> ContentContext:
    return ContentContext(
        project_name=params.name,
        description=(params.description or "").strip(),
        organization=params.organization,
        language=params.language,
        repo_url=repo.html_url.rstrip("/"),
        branch=repo.default_branch or "main",
        created_at=_parse_created_at(repo.created_at),
        module=ecosystem.module if ecosystem else "",
        ecosystem_root=ecosystem.root if ecosystem else ".",
    )


def render_readme(ctx: ContentContext) -> str:
    about = ctx.description or "No description was provided at creation time."
    return (
        f"# {ctx.project_name}\n"
        "\n"
        f"{about}\n"
        "\n"
        "## Security\n"
        "This repository was scaffolded secure by default:\n"
        "- License: see `LICENSE`\n"
        "- Vulnerability disclosure: see `SECURITY.md`\n"
        "- Security metadata: see `SECURITY_INSIGHTS.yml`\n"
        "- Supply chain workflows: see `.github/workflows/`\n"
    )


def render_license(ctx: ContentContext) -> str:
    return render_apache_2_0(year=ctx.year, holder=f"The {ctx.project_name} Authors")


def render_gitignore(ctx: ContentContext) -> str:
    common = (
        "# Editors and OS files\n"
        ".idea/\n"
        ".vscode/\n"
        "*.swp\n"
        ".DS_Store\n"
        "\n"
        "# Local environment\n"
        ".env\n"
        ".env.*\n"
    )
    if ctx.language == "maven":
        return (
            "# Build output\n"
            "target/\n"
            "*.class\n"
            "*.jar\n"
            "*.war\n"
            "\n"
            "# Maven\n"
            "pom.xml.tag\n"
            "pom.xml.releaseBackup\n"
            "pom.xml.versionsBackup\n"
            "release.properties\n"
            "\n" + common
        )
    return (
        "# Binaries\n"
        "*.exe\n"
        "*.exe~\n"
        "*.dll\n"
        "*.so\n"
        "*.dylib\n"
        "\n"
        "# Test output\n"
        "*.test\n"
        "*.out\n"
        "coverage.txt\n"
        "\n"
        "# Release artifacts\n"
        "dist/\n"
        "\n"
        "# Workspace\n"
        "go.work\n"
        "\n" + common
    )


def render_security_policy(ctx: ContentContext) -> str:
    advisory_url = f"{ctx.repo_url}/security/advisories/new" if ctx.repo_url else ""
    report_line = (
        f"Report it privately at {advisory_url}.\n"
        if advisory_url
        else "Report it privately through the repository's security advisories.\n"
    )
    return (
        "# Security Policy\n"
        "\n"
        "## Supported Versions\n"
        f"{ctx.project_name} is pre-release software. Only the latest commit on "
        f"`{ctx.branch}` receives security fixes.\n"
        "\n"
        "## Reporting a Vulnerability\n"
        "Please do not open public issues for security problems.\n" + report_line + "\n"
        "You should receive an acknowledgement within 3 business days. We will keep\n"
        "you informed while a fix is prepared and credit you in the advisory unless\n"
        "you ask us not to.\n"
    )


def render_security_insights(ctx: ContentContext) -> str:
    reviewed = ctx.created_at.strftime("%Y-%m-%dT%H:%M:%S.000Z")
    expires = (ctx.created_at + timedelta(days=365)).strftime("%Y-%m-%dT%H:%M:%S.000Z")
    return (
        "header:\n"
        "  schema-version: 1.0.0\n"
        f"  expiration-date: '{expires}'\n"
        f"  last-updated: '{reviewed}'\n"
        f"  last-reviewed: '{reviewed}'\n"
        f"  project-url: {ctx.repo_url}\n"
        f"  license: {ctx.repo_url}/blob/{ctx.branch}/LICENSE\n"
        "project-lifecycle:\n"
        "  status: active\n"
        "  bug-fixes-only: false\n"
        "contribution-policy:\n"
        "  accepts-pull-requests: true\n"
        "  accepts-automated-pull-requests: true\n"
        "distribution-points: []\n"
        "security-contacts: []\n"
        "security-testing: []\n"
        "vulnerability-reporting:\n"
        "  accepts-vulnerability-reports: true\n"
        f"  security-policy: {ctx.repo_url}/blob/{ctx.branch}/SECURITY.md\n"
    )


def render_sbom_workflow(ctx: ContentContext) -> str:
    path = "." if ctx.ecosystem_root in ("", ".") else ctx.ecosystem_root
    return (
        "name: SBOM\n"
        "\n"
        "on:\n"
        "  push:\n"
        f"    branches: [{ctx.branch}]\n"
        "  release:\n"
        "    types: [published]\n"
        "\n"
        "permissions:\n"
        "  contents: write\n"
        "\n"
        "jobs:\n"
        "  sbom:\n"
        "    runs-on: ubuntu-latest\n"
        "    steps:\n"
        "      - uses: actions/checkout@v4\n"
        "      - uses: anchore/sbom-action@v0\n"
        "        with:\n"
        f"          path: {path}\n"
        "          format: spdx-json\n"
        f"          artifact-name: {ctx.project_name}.spdx.json\n"
    )


def render_slsa_workflow(ctx: ContentContext) -> str:
    if ctx.language == "maven":
        build = (
            "      - uses: actions/setup-java@v4\n"
            "        with:\n"
            "          distribution: temurin\n"
            "          java-version: '21'\n"
            "      - id: build\n"
            f"        working-directory: {ctx.ecosystem_root}\n"
            "        run: |\n"
            "          mvn -B package\n"
            '          echo "hashes=$(sha256sum target/*.jar | base64 -w0)" >> "$GITHUB_OUTPUT"\n'
        )
    else:
        build = (
            "      - uses: actions/setup-go@v5\n"
            "        with:\n"
            "          go-version-file: go.mod\n"
            "      - id: build\n"
            "        uses: goreleaser/goreleaser-action@v6\n"
            "        with:\n"
            "          args: release --clean\n"
            "        env:\n"
            "          GITHUB_TOKEN: ${{ secrets.GITHUB_TOKEN }}\n"
        )
    return (
        "name: Release\n"
        "\n"
        "on:\n"
        "  push:\n"
        "    tags: ['v*']\n"
        "\n"
        "permissions: read-all\n"
        "\n"
        "jobs:\n"
        "  build:\n"
        "    runs-on: ubuntu-latest\n"
        "    permissions:\n"
        "      contents: write\n"
        "    outputs:\n"
        "      hashes: ${{ steps.build.outputs.hashes }}\n"
        "    steps:\n"
        "      - uses: actions/checkout@v4\n"
        "        with:\n"
        "          fetch-depth: 0\n" + build + "\n"
        "  provenance:\n"
        "    needs: [build]\n"
        "    permissions:\n"
        "      actions: read\n"
        "      id-token: write\n"
        "      contents: write\n"
        "    uses: slsa-framework/slsa-github-generator/.github/workflows/generator_generic_slsa3.yml@v2.0.0\n"
        "    with:\n"
        '      base64-subjects: "${{ needs.build.outputs.hashes }}"\n'
        "      upload-assets: true\n"
    )


def render_dependabot(ctx: ContentContext) -> str:
    ecosystem = "maven" if ctx.language == "maven" else "gomod"
    directory = "/" if ctx.ecosystem_root in ("", ".") else f"/{ctx.ecosystem_root}"
    return (
        "version: 2\n"
        "updates:\n"
        f"  - package-ecosystem: {ecosystem}\n"
        f'    directory: "{directory}"\n'
        "    schedule:\n"
        "      interval: weekly\n"
        "  - package-ecosystem: github-actions\n"
        '    directory: "/"\n'
        "    schedule:\n"
        "      interval: weekly\n"
    )


def render_cifuzz(ctx: ContentContext) -> str:
    language = "jvm" if ctx.language == "maven" else "go"
    return (
        "name: CIFuzz\n"
        "\n"
        "on: [pull_request]\n"
        "\n"
        "permissions: {}\n"
        "\n"
        "jobs:\n"
        "  fuzzing:\n"
        "    runs-on: ubuntu-latest\n"
        "    permissions:\n"
        "      security-events: write\n"
        "    steps:\n"
        "      - name: Build Fuzzers\n"
        "        id: build\n"
        "        uses: google/oss-fuzz/infra/cifuzz/actions/build_fuzzers@master\n"
        "        with:\n"
        f"          oss-fuzz-project-name: '{ctx.project_name}'\n"
        f"          language: {language}\n"
        "      - name: Run Fuzzers\n"
        "        uses: google/oss-fuzz/infra/cifuzz/actions/run_fuzzers@master\n"
        "        with:\n"
        f"          oss-fuzz-project-name: '{ctx.project_name}'\n"
        f"          language: {language}\n"
        "          fuzz-seconds: 300\n"
        "          output-sarif: true\n"
    )


def render_scorecard_workflow(ctx: ContentContext) -> str:
    return (
        "name: Scorecard supply-chain security\n"
        "\n"
        "on:\n"
        "  branch_protection_rule:\n"
        "  schedule:\n"
        "    - cron: '30 1 * * 6'\n"
        "  push:\n"
        f"    branches: [{ctx.branch}]\n"
        "\n"
        "permissions: read-all\n"
        "\n"
        "jobs:\n"
        "  analysis:\n"
        "    runs-on: ubuntu-latest\n"
        "    permissions:\n"
        "      security-events: write\n"
        "      id-token: write\n"
        "    steps:\n"
        "      - uses: actions/checkout@v4\n"
        "        with:\n"
        "          persist-credentials: false\n"
        "      - uses: ossf/scorecard-action@v2.4.0\n"
        "        with:\n"
        "          results_file: results.sarif\n"
        "          results_format: sarif\n"
        "          publish_results: true\n"
        "      - uses: github/codeql-action/upload-sarif@v3\n"
        "        with:\n"
        "          sarif_file: results.sarif\n"
    )


def render_codeql_workflow(ctx: ContentContext) -> str:
    language = "java" if ctx.language == "maven" else "go"
    return (
        "name: CodeQL\n"
        "\n"
        "on:\n"
        "  push:\n"
        f"    branches: [{ctx.branch}]\n"
        "  pull_request:\n"
        f"    branches: [{ctx.branch}]\n"
        "  schedule:\n"
        "    - cron: '24 4 * * 1'\n"
        "\n"
        "permissions: read-all\n"
        "\n"
        "jobs:\n"
        "  analyze:\n"
        "    runs-on: ubuntu-latest\n"
        "    permissions:\n"
        "      security-events: write\n"
        "    steps:\n"
        "      - uses: actions/checkout@v4\n"
        "      - uses: github/codeql-action/init@v3\n"
        "        with:\n"
        f"          languages: {language}\n"
        "      - uses: github/codeql-action/autobuild@v3\n"
        "      - uses: github/codeql-action/analyze@v3\n"
    )


def render_main_go(ctx: ContentContext) -> str:
    return (
        "package main\n"
        "\n"
        'import "fmt"\n'
        "\n"
        "func main() {\n"
        f'\tfmt.Println("Hello from {ctx.project_name}")\n'
        "}\n"
    )
