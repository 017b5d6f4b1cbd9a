from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ProblemDetails(BaseModel):
    status: int
    code: str
    message: str
    request_id: str
    run_id: str | None = None


def problem(*, status: int, code: str, message: str, request_id: str, run_id: str | None = None) -> ProblemDetails:
    return ProblemDetails(status=status, code=code, message=message, request_id=request_id, run_id=run_id)


def problem_response(request: Request, *, status: int, code: str, message: str) -> JSONResponse:
    """ProblemDetails JSON response carrying the request's X-Request-ID."""
    rid = getattr(request.state, "request_id", "")
    run_id = getattr(request.state, "run_id", None)
    payload = problem(status=status, code=code, message=message, request_id=rid, run_id=run_id)
    resp = JSONResponse(status_code=status, content=payload.model_dump(exclude_none=True))
    resp.headers["X-Request-ID"] = rid
    return resp
