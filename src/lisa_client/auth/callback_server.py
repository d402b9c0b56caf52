"""Loopback HTTP listener that receives the OAuth redirect.

The listener binds the first free port from a fixed list, answers exactly one
``/callback`` request with a static page, and is torn down as soon as that
request arrives, the wait times out, or the user cancels.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from .errors import AuthCancelledError, AuthTimeoutError, CallbackServerError

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"
DEFAULT_CALLBACK_TIMEOUT = 5 * 60.0

AUTH_SUCCESS_HTML = """<html>
  <head>
    <meta charset="UTF-8" />
    <title>AgentLISA Authentication Complete</title>
  </head>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; text-align: center; padding: 48px;">
    <h1>Authentication complete</h1>
    <p>You can close this window and return to your editor.</p>
  </body>
</html>
"""


@dataclass(frozen=True)
class CallbackParams:
    """Query parameters delivered on the redirect."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def from_query(cls, query: Dict[str, str]) -> "CallbackParams":
        return cls(
            code=query.get("code"),
            state=query.get("state"),
            error=query.get("error"),
            error_description=query.get("error_description"),
        )


class CallbackServer:
    def __init__(
        self,
        ports: Sequence[int],
        *,
        host: str = "localhost",
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
    ) -> None:
        if not ports:
            raise ValueError("At least one callback port is required")
        self._ports = tuple(ports)
        self._host = host
        self._timeout = timeout
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task[None]] = None
        self._result: Optional[asyncio.Future[CallbackParams]] = None
        self.port: Optional[int] = None

    @property
    def redirect_uri(self) -> str:
        if self.port is None:
            raise CallbackServerError("Callback server is not running")
        return f"http://localhost:{self.port}{CALLBACK_PATH}"

    @property
    def is_running(self) -> bool:
        return self._server is not None

    async def start(self) -> int:
        """Bind the first available port and return it.

        Raises:
            CallbackServerError: If every configured port is taken.
        """
        sock, port = self._bind_first_free_port()
        self._result = asyncio.get_running_loop().create_future()

        # uvicorn only ever sees an already bound socket
        config = uvicorn.Config(
            self._build_app(),
            lifespan="off",
            log_config=None,
            access_log=False,
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name=f"lisa-oauth-callback-{port}")
        while not server.started:
            if task.done():
                sock.close()
                reason = "cancelled" if task.cancelled() else task.exception()
                raise CallbackServerError(f"Failed to start OAuth callback server: {reason}")
            await asyncio.sleep(0.01)

        task.add_done_callback(self._on_server_exit)
        self._server = server
        self._serve_task = task
        self.port = port
        return port

    def _bind_first_free_port(self) -> tuple[socket.socket, int]:
        for index, port in enumerate(self._ports):
            try:
                sock = socket.create_server((self._host, port))
            except OSError as exc:
                logger.info("Port %s is in use (%s), trying next port...", port, exc)
                continue
            logger.info("OAuth callback server listening on port %s (port %s of %s)", port, index + 1, len(self._ports))
            return sock, port

        ports = ", ".join(str(port) for port in self._ports)
        raise CallbackServerError(f"Failed to start OAuth callback server. Ports {ports} are all in use.")

    def _build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.get(CALLBACK_PATH, response_class=HTMLResponse)
        async def oauth_callback(request: Request) -> HTMLResponse:
            if self._result is not None and not self._result.done():
                self._result.set_result(CallbackParams.from_query(dict(request.query_params)))
            else:
                logger.debug("Ignoring extra request on the OAuth callback listener")
            return HTMLResponse(AUTH_SUCCESS_HTML)

        return app

    async def wait_for_callback(self) -> CallbackParams:
        """Wait for the redirect.

        Raises:
            AuthTimeoutError: No request arrived within the timeout.
            AuthCancelledError: :meth:`cancel` was called first, or the
                listener stopped.
        """
        if self._result is None:
            raise CallbackServerError("Callback server is not running")
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), self._timeout)
        except asyncio.TimeoutError as exc:
            raise AuthTimeoutError("Authentication timed out. Please try again.") from exc

    def cancel(self) -> None:
        if self._result is not None and not self._result.done():
            self._result.set_exception(AuthCancelledError("Authentication was cancelled."))

    async def close(self) -> None:
        if self._result is not None and not self._result.done():
            self._result.cancel()
        server, self._server = self._server, None
        task, self._serve_task = self._serve_task, None
        if server is None or task is None:
            return
        server.should_exit = True
        try:
            await task
        except Exception as exc:
            logger.warning("OAuth callback server on port %s stopped with an error: %s", self.port, exc)
        logger.debug("OAuth callback server on port %s closed", self.port)

    async def __aenter__(self) -> "CallbackServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _on_server_exit(self, task: asyncio.Task[None]) -> None:
        # e.g. uvicorn shut down on SIGINT while the user was still signing in
        if self._result is not None and not self._result.done():
            self._result.set_exception(AuthCancelledError("Authentication was cancelled."))
