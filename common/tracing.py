"""
Per-request correlation ids.

An incoming X-Trace-ID is reused (so a caller can follow its own id through
our logs), otherwise one is minted. The id is exposed on request.state for
error bodies and echoed back with a fresh X-Span-ID.
"""
import json
import logging
import time
import uuid
from fastapi import Request

logger = logging.getLogger(__name__)

SERVICE_NAME = "payment-service"

async def tracing_middleware(request: Request, call_next):
    trace_id = request.headers.get("X-Trace-ID") or uuid.uuid4().hex[:16]
    span_id = uuid.uuid4().hex[:8]
    request.state.trace_id = trace_id
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Trace-ID"] = trace_id
        response.headers["X-Span-ID"] = span_id
        return response
    finally:
        logger.info("TRACE: " + json.dumps({
            "service": SERVICE_NAME,
            "trace_id": trace_id,
            "span_id": span_id,
            "parent_span_id": request.headers.get("X-Span-ID"),
            "operation": f"{request.method} {request.url.path}",
            "status_code": status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        }))
