from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from securescaffold.errors import (
    DriftDetected,
    FacetNotFound,
    OutputNotFound,
    ProjectNotFound,
    ScaffoldError,
    UpstreamUnavailable,
    WorkingCopyFailed,
)
from securescaffold.projects.engine import ProjectEngine
from securescaffold.projects.models import ProjectParams, parse_facet_kind

# Load local env after imports to keep linting (E402) happy.
load_dotenv()

app = FastAPI()
logger = logging.getLogger(__name__)

_engine: ProjectEngine | None = None


def _get_engine() -> ProjectEngine:
    global _engine
    if _engine is None:
        _engine = ProjectEngine()
    return _engine


def _error_response(exc: ScaffoldError) -> JSONResponse:
    body: dict[str, Any] = {"error": exc.code, "detail": str(exc)}
    if isinstance(exc, DriftDetected):
        body["paths"] = list(exc.paths)
        return JSONResponse(body, status_code=409)
    if isinstance(exc, (ProjectNotFound, FacetNotFound, OutputNotFound)):
        return JSONResponse(body, status_code=404)
    if isinstance(exc, WorkingCopyFailed):
        body["advice"] = exc.advice
        return JSONResponse(body, status_code=502)
    if isinstance(exc, UpstreamUnavailable):
        return JSONResponse(body, status_code=502)
    return JSONResponse(body, status_code=500)


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        body = {}
    return body if isinstance(body, dict) else {}


def _facet_list(raw: Any) -> list[str] | None:
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ValueError("facets must be a list of facet kinds")
    return [str(x) for x in raw]


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/facets")
async def api_list_available_facets() -> JSONResponse:
    engine = _get_engine()
    return JSONResponse(
        {"facets": [d.to_dict() for d in engine.list_available_facets()]}, status_code=200
    )


@app.get("/api/projects")
async def api_list_projects() -> JSONResponse:
    engine = _get_engine()
    items = await asyncio.to_thread(engine.list)
    return JSONResponse({"projects": [e.to_dict() for e in items]}, status_code=200)


@app.post("/api/projects")
async def api_create_project(request: Request) -> JSONResponse:
    body = await _json_body(request)
    try:
        params = ProjectParams(
            name=str(body.get("name") or "").strip(),
            organization=str(body.get("organization") or "").strip(),
            language=str(body.get("language") or "").strip().lower(),  # type: ignore[arg-type]
            description=str(body.get("description") or ""),
            visibility=str(body.get("visibility") or "public"),  # type: ignore[arg-type]
            owner_kind=str(body.get("owner_kind") or "organization"),  # type: ignore[arg-type]
        )
        facets = _facet_list(body.get("facets"))
    except ValueError as e:
        return JSONResponse({"error": "invalid_request", "detail": str(e)}, status_code=400)

    engine = _get_engine()
    try:
        result = await asyncio.to_thread(engine.create, params, facets)
    except ValueError as e:
        return JSONResponse({"error": "invalid_request", "detail": str(e)}, status_code=400)
    except ScaffoldError as e:
        logger.warning("Project creation for %s failed: %s", params.identifier, e)
        return _error_response(e)
    return JSONResponse(result.to_dict(), status_code=201)


@app.get("/api/projects/{owner}/{name}")
async def api_get_project(owner: str, name: str) -> JSONResponse:
    engine = _get_engine()
    try:
        project = await asyncio.to_thread(engine.get, f"{owner}/{name}")
    except ScaffoldError as e:
        return _error_response(e)
    return JSONResponse(project.to_dict(), status_code=200)


@app.post("/api/projects/{owner}/{name}/update")
async def api_update_project(owner: str, name: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    try:
        facets = _facet_list(body.get("facets")) or []
    except ValueError as e:
        return JSONResponse({"error": "invalid_request", "detail": str(e)}, status_code=400)
    if not facets:
        return JSONResponse({"error": "missing_facets"}, status_code=400)

    engine = _get_engine()
    try:
        project = await asyncio.to_thread(engine.update, f"{owner}/{name}", facets)
    except ValueError as e:
        return JSONResponse({"error": "invalid_request", "detail": str(e)}, status_code=400)
    except ScaffoldError as e:
        return _error_response(e)
    return JSONResponse(project.to_dict(), status_code=200)


@app.post("/api/projects/{owner}/{name}/archive")
async def api_archive_project(owner: str, name: str) -> JSONResponse:
    engine = _get_engine()
    try:
        project = await asyncio.to_thread(engine.archive, f"{owner}/{name}")
    except ScaffoldError as e:
        return _error_response(e)
    return JSONResponse(project.to_dict(), status_code=200)


@app.get("/api/projects/{owner}/{name}/facets")
async def api_list_project_facets(owner: str, name: str) -> JSONResponse:
    engine = _get_engine()
    try:
        facets = await asyncio.to_thread(engine.list_facets, f"{owner}/{name}")
    except ScaffoldError as e:
        return _error_response(e)
    return JSONResponse({"facets": [f.to_dict() for f in facets]}, status_code=200)


@app.get("/api/projects/{owner}/{name}/facets/{kind}")
async def api_get_project_facet(owner: str, name: str, kind: str) -> JSONResponse:
    facet_kind = parse_facet_kind(kind)
    if facet_kind is None:
        return JSONResponse({"error": "invalid_facet_kind"}, status_code=400)

    engine = _get_engine()
    try:
        facet = await asyncio.to_thread(engine.get_facet, f"{owner}/{name}", facet_kind)
    except ScaffoldError as e:
        return _error_response(e)
    return JSONResponse(facet.to_dict(), status_code=200)


@app.get("/api/projects/{owner}/{name}/outputs")
async def api_list_project_outputs(
    owner: str, name: str, release: str | None = None, output_type: str | None = None
) -> JSONResponse:
    engine = _get_engine()
    try:
        outputs = await asyncio.to_thread(
            lambda: engine.list_outputs(
                f"{owner}/{name}", release=release, output_type=output_type
            )
        )
    except ScaffoldError as e:
        return _error_response(e)
    return JSONResponse({"outputs": [o.to_dict() for o in outputs]}, status_code=200)


@app.get("/api/projects/{owner}/{name}/outputs/{output_name}")
async def api_get_project_output(
    owner: str, name: str, output_name: str, release: str | None = None
) -> JSONResponse:
    engine = _get_engine()
    try:
        data = await asyncio.to_thread(
            lambda: engine.get_output(f"{owner}/{name}", output_name, release=release)
        )
    except ScaffoldError as e:
        return _error_response(e)
    return JSONResponse(
        {
            "name": output_name,
            "size": len(data),
            "content_base64": base64.b64encode(data).decode("ascii"),
        },
        status_code=200,
    )
