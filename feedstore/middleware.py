import time
import uuid
from fastapi import Request

from feedstore.logging_utils import log_event


async def request_id_middleware(request: Request, call_next):
    # Unique ID per request, echoed back so log lines can be matched to responses
    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    t0 = time.perf_counter()

    response = await call_next(request)

    response.headers['X-Request-ID'] = request_id
    log_event(
        "http_request",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        elapsed_ms=int((time.perf_counter() - t0) * 1000),
    )

    return response
