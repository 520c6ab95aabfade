"""Entry point for ``python -m securescaffold`` and the ``securescaffold`` script."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv

from securescaffold.config import log_level
from securescaffold.errors import DriftDetected, ScaffoldError, WorkingCopyFailed
from securescaffold.projects.engine import ProjectEngine
from securescaffold.projects.models import ProjectParams, ProjectStatus, parse_facet_kind


def _build_engine() -> ProjectEngine:
    return ProjectEngine()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="securescaffold", description="Create and inspect secure-by-default repositories"
    )
    nouns = parser.add_subparsers(dest="noun", required=True)

    project = nouns.add_parser("project", help="Create, inspect and archive projects")
    pverbs = project.add_subparsers(dest="verb", required=True)
    create = pverbs.add_parser("create", help="Create a new repository and scaffold it")
    create.add_argument("--name", required=True)
    create.add_argument("--organization", required=True, help="GitHub organization or user")
    create.add_argument("--language", required=True, choices=["go", "maven"])
    create.add_argument("--description", default="")
    create.add_argument("--private", action="store_true", help="Create a private repository")
    create.add_argument(
        "--user", action="store_true", help="Create under the authenticated user, not an org"
    )
    create.add_argument(
        "--facet",
        action="append",
        dest="facets",
        default=None,
        help="Facet kind to apply (repeatable; default: all defaults for the language)",
    )
    get = pverbs.add_parser("get", help="Show a project's recorded state")
    get.add_argument("identifier", help="owner/name")
    update = pverbs.add_parser("update", help="Re-apply the named facets")
    update.add_argument("identifier")
    update.add_argument("--facet", action="append", dest="facets", required=True)
    archive = pverbs.add_parser("archive", help="Mark a project archived")
    archive.add_argument("identifier")
    pverbs.add_parser("list", help="List known projects")
    prune = pverbs.add_parser("prune", help="Forget a project locally")
    prune.add_argument("identifier")

    facet = nouns.add_parser("facet", help="Inspect facets")
    fverbs = facet.add_subparsers(dest="verb", required=True)
    flist = fverbs.add_parser("list", help="List a project's facets, or the catalog")
    flist.add_argument("identifier", nargs="?", default=None)
    fget = fverbs.add_parser("get", help="Show a facet's current state (drift-checked)")
    fget.add_argument("identifier")
    fget.add_argument("kind")

    output = nouns.add_parser("output", help="Inspect release outputs")
    overbs = output.add_subparsers(dest="verb", required=True)
    olist = overbs.add_parser("list", help="List release assets")
    olist.add_argument("identifier")
    olist.add_argument("--release", default=None, help="Release tag (default: latest)")
    olist.add_argument("--type", dest="output_type", choices=["sbom", "custom"], default=None)
    oget = overbs.add_parser("get", help="Download a release asset")
    oget.add_argument("identifier")
    oget.add_argument("name")
    oget.add_argument("--release", default=None)
    oget.add_argument("--out", default=None, help="Write to this file instead of stdout")

    daemon = nouns.add_parser("daemon", help="Run the REST daemon")
    dverbs = daemon.add_subparsers(dest="verb", required=True)
    start = dverbs.add_parser("start", help="Start the REST server")
    start.add_argument("--host", default="127.0.0.1")
    start.add_argument("--port", type=int, default=8000)
    return parser


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _project_command(engine: ProjectEngine, args: argparse.Namespace) -> int:
    if args.verb == "create":
        params = ProjectParams(
            name=args.name,
            organization=args.organization,
            language=args.language,
            description=args.description,
            visibility="private" if args.private else "public",
            owner_kind="user" if args.user else "organization",
        )
        result = engine.create(params, args.facets)
        _emit(result.to_dict())
        if result.project.status == ProjectStatus.PARTIALLY_FAILED:
            for w in result.warnings:
                print(f"warning: {w}", file=sys.stderr)
        return 0
    if args.verb == "get":
        _emit(engine.get(args.identifier).to_dict())
        return 0
    if args.verb == "update":
        project = engine.update(args.identifier, args.facets)
        _emit(project.to_dict())
        for f in project.failures:
            print(f"warning: facet {f.kind.value} failed: {f.error}", file=sys.stderr)
        return 0
    if args.verb == "archive":
        _emit(engine.archive(args.identifier).to_dict())
        return 0
    if args.verb == "list":
        _emit({"projects": [e.to_dict() for e in engine.list()]})
        return 0
    if args.verb == "prune":
        removed = engine.store.prune(args.identifier)
        _emit({"identifier": args.identifier, "pruned": removed})
        return 0
    raise ValueError(f"unknown project command: {args.verb}")


def _facet_command(engine: ProjectEngine, args: argparse.Namespace) -> int:
    if args.verb == "list":
        if args.identifier is None:
            _emit({"facets": [d.to_dict() for d in engine.list_available_facets()]})
        else:
            _emit({"facets": [f.to_dict() for f in engine.list_facets(args.identifier)]})
        return 0
    kind = parse_facet_kind(args.kind)
    if kind is None:
        raise ValueError(f"unknown facet kind: {args.kind}")
    _emit(engine.get_facet(args.identifier, kind).to_dict())
    return 0


def _output_command(engine: ProjectEngine, args: argparse.Namespace) -> int:
    if args.verb == "list":
        outputs = engine.list_outputs(
            args.identifier, release=args.release, output_type=args.output_type
        )
        _emit({"outputs": [o.to_dict() for o in outputs]})
        return 0
    data = engine.get_output(args.identifier, args.name, release=args.release)
    if args.out:
        with open(args.out, "wb") as fh:
            fh.write(data)
        _emit({"name": args.name, "path": args.out, "size": len(data)})
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
    return 0


def _daemon_command(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "securescaffold.runtimes.rest_server:app",
        host=args.host,
        port=args.port,
        log_level=log_level().lower(),
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, log_level()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.noun == "daemon":
        return _daemon_command(args)

    engine = _build_engine()
    try:
        if args.noun == "project":
            return _project_command(engine, args)
        if args.noun == "facet":
            return _facet_command(engine, args)
        return _output_command(engine, args)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except DriftDetected as exc:
        _emit(
            {
                "error": exc.code,
                "detail": str(exc),
                "paths": exc.paths,
                "recorded": exc.recorded.to_dict() if exc.recorded is not None else None,
                "current": exc.current.to_dict() if exc.current is not None else None,
            }
        )
        return 1
    except WorkingCopyFailed as exc:
        print(f"error: {exc.code}: {exc}", file=sys.stderr)
        print(exc.advice, file=sys.stderr)
        return 1
    except ScaffoldError as exc:
        print(f"error: {exc.code}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
