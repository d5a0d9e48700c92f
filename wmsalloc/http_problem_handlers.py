# wmsalloc/http_problem_handlers.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from wmsalloc.api.deps import resolve_trace_id
from wmsalloc.api.problem import make_problem

logger = logging.getLogger("wmsalloc")


def _request_context(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def _trace_id(req: Request) -> str:
    return resolve_trace_id(req.headers.get("x-trace-id"))


def _problem_from_http_exc(req: Request, exc: HTTPException) -> Dict[str, Any]:
    """
    HTTPException.detail -> Problem.

    Route handlers raise a complete Problem dict (raise_problem); it is kept and
    the request context merged under its own. Anything else (plain Starlette
    404/405, str detail) becomes an http_error problem.
    """
    status_code = int(exc.status_code)
    ctx = _request_context(req)
    d = exc.detail

    if isinstance(d, dict) and "error_code" in d and "message" in d:
        out = dict(d)
        out.setdefault("http_status", status_code)
        if not out.get("trace_id"):
            out["trace_id"] = _trace_id(req)
        out["context"] = {**ctx, **(out.get("context") or {})}
        return out

    msg = str(d) if d is not None else "request rejected"
    return make_problem(
        status_code=status_code,
        error_code="http_error",
        message=msg,
        context=ctx,
        details=[{"type": "state", "reason": msg}],
        trace_id=_trace_id(req),
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _trace_id(req)
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        content = make_problem(
            status_code=500,
            error_code="internal_error",
            message="internal error, please retry later",
            context=_request_context(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        details: List[Dict[str, Any]] = []
        for e in exc.errors():
            loc = ".".join(str(p) for p in e.get("loc", ()) if p != "body")
            details.append(
                {
                    "type": "validation",
                    "path": loc or "request",
                    "reason": str(e.get("msg") or e.get("type") or "invalid"),
                }
            )

        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="invalid request",
            context=_request_context(req),
            details=details,
            trace_id=_trace_id(req),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        content = _problem_from_http_exc(req, exc)
        return JSONResponse(status_code=int(exc.status_code), content=content)
