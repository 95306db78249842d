"""Structured JSON logging bound to the current request.

The HTTP middleware binds a request id (taken from ``X-Request-ID`` when the
gateway supplies one) and the calling actor (``X-Actor-Id``) to context
variables. `LedgerContextFilter` stamps both onto every record emitted while
the request runs, so a status change, a refused approval or a failed
notification can be traced back to who asked for it.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
actor_id_ctx: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)

# Keys passed via `extra=` that land in the JSON line
CONTEXT_FIELDS = (
    "expense_id",
    "category_id",
    "budget_id",
    "status",
    "actor_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
)


class LedgerContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = request_id_ctx.get() or "-"
        # an explicit extra={"actor_id": ...} wins over the request's actor
        if getattr(record, "actor_id", None) is None:
            actor = actor_id_ctx.get()
            if actor:
                record.actor_id = actor
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        line: Dict[str, Any] = {
            "time": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                line[key] = value
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def init_logging(debug: bool = False) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    level = logging.DEBUG if debug else logging.INFO
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(LedgerContextFilter())
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)


async def request_context_middleware(request, call_next):  # type: ignore
    rid = request.headers.get("x-request-id") or uuid.uuid4().hex
    rid_token = request_id_ctx.set(rid)
    actor_token = actor_id_ctx.set(request.headers.get("x-actor-id"))
    logger = logging.getLogger("budget_engine.request")
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-ID"] = rid
        return response
    finally:
        logger.info(
            "%s %s -> %d",
            request.method,
            request.url.path,
            status_code,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        actor_id_ctx.reset(actor_token)
        request_id_ctx.reset(rid_token)
