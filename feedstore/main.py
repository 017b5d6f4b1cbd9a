from __future__ import annotations

import sqlite3

from fastapi import FastAPI, Request, HTTPException, Query
from fastapi.exceptions import RequestValidationError

from feedstore.config import Settings
from feedstore.db import InvalidDbPathError
from feedstore.errors import problem_response
from feedstore.logging_utils import log_event
from feedstore.middleware import request_id_middleware
from feedstore.repo import StoreWriteError, get_latest_run
from feedstore.rss_fetch import SourceUnavailable
from feedstore.rss_parse import FeedParseError
from feedstore.service import DEFAULT_LIMIT, DEFAULT_PAGE, FeedService

MAX_LIMIT = 100


def create_app(service: FeedService | None = None) -> FastAPI:
    """
    Build the read API around an explicitly constructed FeedService.
    Without one, settings come from the environment (.env honoured).
    """
    if service is None:
        service = FeedService(Settings.from_env())

    app = FastAPI(title="feedstore")
    app.state.service = service

    # Register middleware
    app.middleware("http")(request_id_middleware)

    @app.get("/health")
    def health(request: Request):
        request_id = request.state.request_id
        log_event("health_check", request_id=request_id)
        return {"status": "ok"}

    @app.get("/api/rss")
    def list_articles(
        request: Request,
        page: int = Query(DEFAULT_PAGE, ge=1),
        limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    ):
        """Newest-first page of the synced articles. Store outages return []."""
        svc: FeedService = request.app.state.service
        articles = svc.get_articles(page=page, limit=limit)
        return [a.model_dump(mode="json") for a in articles]

    @app.get("/api/rss/source")
    def source_feed(request: Request, url: str = Query(..., min_length=1)):
        """Single-source feed served through the freshness-window cache. Registered sources only."""
        svc: FeedService = request.app.state.service
        request_id = request.state.request_id
        try:
            registered = svc.is_registered(url)
        except (sqlite3.Error, InvalidDbPathError) as exc:
            log_event("source_feed_store_failed", request_id=request_id, url=url, error=str(exc))
            return problem_response(request, status=503, code="store_unavailable", message="Source registry unavailable")
        if not registered:
            raise HTTPException(status_code=404, detail="Unknown feed source")

        try:
            articles = svc.fetch_and_store_feed(url)
        except (SourceUnavailable, FeedParseError) as exc:
            log_event("source_feed_failed", request_id=request_id, url=url, error=str(exc))
            return problem_response(request, status=502, code="source_unavailable", message=str(exc))
        except StoreWriteError as exc:
            log_event("source_feed_store_failed", request_id=request_id, url=url, error=str(exc))
            return problem_response(request, status=503, code="store_unavailable", message="Feed cache unavailable")
        return [a.model_dump(mode="json") for a in articles]

    @app.get("/runs/latest")
    def latest_run(request: Request):
        svc: FeedService = request.app.state.service
        with svc.connect() as conn:
            latest = get_latest_run(conn)

        if latest is None:
            raise HTTPException(status_code=404, detail="No sync runs found")

        return latest

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        rid = getattr(request.state, "request_id", None)
        log_event("http_error", request_id=rid, status=exc.status_code, message=str(exc.detail))
        return problem_response(request, status=exc.status_code, code="http_error", message=str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Return ProblemDetails for query validation errors."""
        # Extract first error for a clean message
        errors = exc.errors()
        if errors:
            first = errors[0]
            loc = ".".join(str(x) for x in first.get("loc", []))  # e.g., "query.page"
            msg = first.get("msg", "Validation error")
            message = f"{loc}: {msg}"
        else:
            message = "Validation error"

        log_event("validation_error", request_id=getattr(request.state, "request_id", None), message=message)
        return problem_response(request, status=422, code="validation_error", message=message)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        # Don't leak details to the client, but do log them
        log_event("internal_error", request_id=getattr(request.state, "request_id", None), error_type=type(exc).__name__)
        return problem_response(request, status=500, code="internal_error", message="Internal server error")

    return app


app = create_app()
