from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from realty_agent.utils.phone import redact_phone

logger = logging.getLogger(__name__)
http_logger = logging.getLogger("realty_agent.http")

STAGES = (
    "HTTP",
    "INTAKE",
    "QUALIFY",
    "CONTEXT",
    "LLM",
    "TOOL",
    "SEARCH",
    "SCHEDULE",
    "PERSIST",
)

_PHONE_KEYS = {"phone", "lead_phone"}
_PII_KEYS = {"email", "name"}

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class StageEvent:
    stage: str
    message: str
    elapsed_ms: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class FlightRecorder:
    """Per-request timeline of the agent's stages, mirrored to the log.

    Stage timings nest (``TOOL`` wraps ``SEARCH``), so totals per stage are
    not additive across stages.
    """

    def __init__(self, request_id: Optional[str] = None) -> None:
        self.request_id = request_id or uuid.uuid4().hex[:12]
        self.events: List[StageEvent] = []
        self.start_time = time.perf_counter()

    @property
    def total_ms(self) -> float:
        return round((time.perf_counter() - self.start_time) * 1000, 2)

    @contextmanager
    def stage(self, stage: str, **metadata: Any) -> Iterator[None]:
        _check_stage(stage)
        stage_start = time.perf_counter()
        failed = False
        try:
            yield
        except BaseException:
            failed = True
            raise
        finally:
            elapsed_ms = round((time.perf_counter() - stage_start) * 1000, 2)
            redacted = _redact(metadata)
            message = f"{stage} failed" if failed else f"{stage} completed"
            self.events.append(StageEvent(stage, message, elapsed_ms, {"total_ms": self.total_ms, **redacted}))
            logger.info(
                "flight_recorder.stage request_id=%s stage=%s status=%s elapsed_ms=%.2f metadata=%s",
                self.request_id,
                stage,
                "failed" if failed else "ok",
                elapsed_ms,
                redacted,
            )

    def log(self, stage: str, message: str, **metadata: Any) -> None:
        _check_stage(stage)
        redacted = _redact(metadata)
        self.events.append(StageEvent(stage, message, 0.0, {"total_ms": self.total_ms, **redacted}))
        logger.info(
            "flight_recorder.log request_id=%s stage=%s message=%s metadata=%s",
            self.request_id,
            stage,
            message,
            redacted,
        )

    def messages(self, stage: str) -> List[str]:
        return [event.message for event in self.events if event.stage == stage]

    def stage_totals(self) -> Dict[str, float]:
        totals: Dict[str, float] = defaultdict(float)
        for event in self.events:
            if event.elapsed_ms:
                totals[event.stage] = round(totals[event.stage] + event.elapsed_ms, 2)
        return dict(totals)


def _check_stage(stage: str) -> None:
    if stage not in STAGES:
        logger.warning("flight_recorder.unknown_stage stage=%s", stage)


def _redact(payload: Dict[str, Any]) -> Dict[str, Any]:
    redacted = {}
    for key, value in payload.items():
        if not value:
            redacted[key] = value
        elif key in _PHONE_KEYS:
            redacted[key] = redact_phone(str(value))
        elif key in _PII_KEYS:
            redacted[key] = "***"
        else:
            redacted[key] = value
    return redacted


class FlightRecorderMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        recorder = FlightRecorder(request.headers.get(REQUEST_ID_HEADER))
        request.state.flight_recorder = recorder
        with recorder.stage("HTTP", path=request.url.path, method=request.method):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = recorder.request_id
        http_logger.info(
            "http.request request_id=%s method=%s path=%s status=%s total_ms=%.2f stages=%s",
            recorder.request_id,
            request.method,
            request.url.path,
            response.status_code,
            recorder.total_ms,
            recorder.stage_totals(),
        )
        return response


def register_log_middleware(app: FastAPI) -> None:
    app.add_middleware(FlightRecorderMiddleware)
