"""
HTTP channel: a small FastAPI app for posting messages to the agent and
collecting its replies.

    GET  /health     liveness
    POST /messages   {"content": "...", "sender": "alice"} -> 202
    GET  /messages   drain replies sent since the last call
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from ..models import Message
from .base import MessageChannel

logger = logging.getLogger("ragbot.channels.http")

OUTBOX_LIMIT = 200


class InboundMessage(BaseModel):
    content: str = Field(min_length=1)
    sender: str = "User"


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_error_envelope(
    *,
    request_id: str,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> Tuple[int, Dict[str, Any]]:
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "meta": {"request_id": request_id},
    }
    return status_code, body


def _error_response(**kwargs: Any) -> JSONResponse:
    status_code, body = build_error_envelope(**kwargs)
    return JSONResponse(status_code=status_code, content=body)


def _get_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return token or None
    return None


class HttpChannel(MessageChannel):
    name = "http"

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 4280,
        *,
        auth_token: Optional[str] = None,
        serve: bool = True,
    ) -> None:
        super().__init__()
        self.host = host
        self.port = port
        self.auth_token = auth_token
        self.serve = serve
        self.outbox: Deque[Message] = deque(maxlen=OUTBOX_LIMIT)
        self.closed = asyncio.Event()
        self._server: Any = None
        self._server_task: Optional[asyncio.Task] = None
        self.app = self._build_app()

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="ragbot", version="0.1.0")

        @app.get("/health")
        async def health() -> Dict[str, Any]:
            return {"status": "ok" if self.is_running else "stopped"}

        @app.post("/messages")
        async def post_message(request: Request) -> JSONResponse:
            request_id = new_request_id()
            if self.auth_token and _get_bearer_token(request) != self.auth_token:
                return _error_response(
                    request_id=request_id,
                    status_code=401,
                    code="UNAUTHORIZED",
                    message="Missing or invalid bearer token",
                )
            if not self.is_running:
                return _error_response(
                    request_id=request_id,
                    status_code=503,
                    code="UNAVAILABLE",
                    message="Channel is not running",
                )
            try:
                payload = InboundMessage.model_validate(await request.json())
            except ValueError as exc:
                details = None
                if isinstance(exc, ValidationError):
                    details = [{"path": list(err["loc"]), "message": err["msg"]} for err in exc.errors()]
                return _error_response(
                    request_id=request_id,
                    status_code=400,
                    code="VALIDATION_ERROR",
                    message="Body must be JSON with a non-empty 'content'",
                    details=details,
                )

            await self._dispatch(Message(content=payload.content, sender=payload.sender, channel=self.name))
            return JSONResponse(status_code=202, content={"status": "accepted", "meta": {"request_id": request_id}})

        @app.get("/messages")
        async def get_messages(request: Request) -> JSONResponse:
            if self.auth_token and _get_bearer_token(request) != self.auth_token:
                return _error_response(
                    request_id=new_request_id(),
                    status_code=401,
                    code="UNAUTHORIZED",
                    message="Missing or invalid bearer token",
                )
            drained = [m.model_dump(mode="json", exclude_none=True) for m in self.drain()]
            return JSONResponse(status_code=200, content={"messages": drained})

        return app

    def drain(self):
        messages = list(self.outbox)
        self.outbox.clear()
        return messages

    async def _start(self) -> None:
        self.closed.clear()
        if not self.serve:
            return
        import uvicorn

        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(self._serve(), name="http-channel")
        logger.info("HTTP channel listening on http://%s:%d", self.host, self.port)

    async def _serve(self) -> None:
        try:
            await self._server.serve()
        finally:
            self.closed.set()

    async def _stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            await self._server_task
            self._server_task = None
        self._server = None
        self.closed.set()

    async def _send(self, message: Message) -> None:
        self.outbox.append(message)
