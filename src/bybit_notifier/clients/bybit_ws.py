"""Bybit v5 private WebSocket session."""

import asyncio
import hashlib
import hmac
import json
import logging
import time
import uuid
from functools import partial
from typing import Any, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ..config.settings import BybitConfig
from ..connection import ConnectionState
from ..exceptions import AuthenticationError, SessionError
from ..router import MessageRouter
from ..utils.logging import get_account_logger

logger = logging.getLogger(__name__)


def sign(api_secret: str, expires: int) -> str:
    """HMAC-SHA256 of ``GET/realtime{expires}`` keyed by the secret, hex encoded."""
    payload = f"GET/realtime{expires}"
    return hmac.new(api_secret.encode('utf-8'), payload.encode('utf-8'), hashlib.sha256).hexdigest()


def build_auth_message(api_key: str, api_secret: str, expires: int, req_id: Optional[str] = None) -> Dict[str, Any]:
    api_key = api_key.strip()
    api_secret = api_secret.strip()
    return {
        "req_id": req_id or str(uuid.uuid4()),
        "op": "auth",
        "args": [api_key, expires, sign(api_secret, expires)],
    }


def build_subscribe_message(topics: List[str]) -> Dict[str, Any]:
    return {"op": "subscribe", "args": list(topics)}


class BybitPrivateStream:
    """
    Runs one authenticated session on the private stream.

    A session opens the socket, authenticates, subscribes and then reads
    frames until it is stopped or the connection fails. Reconnecting is
    the supervisor's job.
    """

    def __init__(self, config: BybitConfig, router: MessageRouter):
        self.config = config
        self.router = router

    async def connect_and_serve(self, state: ConnectionState) -> None:
        """
        Serve one session for ``state.account``.

        Returns None on a clean end (stop requested or a normal close by the
        server) and raises SessionError when the session failed.
        """
        account = state.account
        account_logger = get_account_logger(__name__, account.id, account.name)

        try:
            websocket = await websockets.connect(
                self.config.ws_url,
                open_timeout=self.config.handshake_timeout_seconds,
                ping_interval=None,
                close_timeout=self.config.close_timeout_seconds,
                max_size=2**20
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise SessionError(f"Failed to connect: {e}") from e

        await state.close_websocket()
        state.websocket = websocket
        state.sessions += 1
        heartbeat: Optional[asyncio.Task] = None

        try:
            if state.stopped:
                return None

            await self._authenticate(websocket, state)

            try:
                await websocket.send(json.dumps(build_subscribe_message(self.config.topics)))
            except (ConnectionClosed, WebSocketException) as e:
                raise SessionError(f"Failed to subscribe: {e}") from e

            account_logger.info(f"Connected, authenticated and subscribed to {', '.join(self.config.topics)}")

            state.last_pong = time.monotonic()
            heartbeat = asyncio.create_task(self._heartbeat(websocket, state))

            return await self._read_loop(websocket, state, account_logger)

        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                await asyncio.gather(heartbeat, return_exceptions=True)
            if state.websocket is websocket:
                state.websocket = None
            try:
                await websocket.close()
            except Exception as e:
                account_logger.debug(f"Error closing websocket: {e}")

    async def _authenticate(self, websocket, state: ConnectionState) -> None:
        account = state.account
        expires = int(time.time() * 1000) + self.config.auth_expiry_ms
        message = build_auth_message(
            account.api_key.get_secret_value(),
            account.api_secret.get_secret_value(),
            expires
        )

        try:
            await websocket.send(json.dumps(message))
            raw = await asyncio.wait_for(websocket.recv(), timeout=self.config.auth_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise SessionError("Timed out waiting for the authentication reply") from e
        except (ConnectionClosed, WebSocketException) as e:
            raise SessionError(f"Connection lost during authentication: {e}") from e

        try:
            reply = json.loads(raw)
        except (TypeError, ValueError):
            reply = None

        if isinstance(reply, dict) and reply.get("success") is False:
            raise AuthenticationError(f"Authentication rejected: {reply.get('ret_msg', '')}")

        get_account_logger(__name__, account.id, account.name).debug("Authentication accepted")

    async def _heartbeat(self, websocket, state: ConnectionState) -> None:
        """Send a protocol ping every interval. Any failure ends the heartbeat quietly."""
        try:
            while not state.stopped:
                await asyncio.sleep(self.config.ping_interval_seconds)
                pong_waiter = await asyncio.wait_for(
                    websocket.ping(), timeout=self.config.ping_timeout_seconds
                )
                pong_waiter.add_done_callback(partial(self._on_pong, state))
        except Exception as e:
            logger.debug(f"Heartbeat for account {state.account_id} ended: {e}")

    @staticmethod
    def _on_pong(state: ConnectionState, pong_waiter: asyncio.Future) -> None:
        if not pong_waiter.cancelled() and pong_waiter.exception() is None:
            state.last_pong = time.monotonic()

    async def _read_loop(self, websocket, state: ConnectionState, account_logger) -> None:
        while not state.stopped:
            try:
                raw = await self._recv(websocket, state)
            except ConnectionClosedOK as e:
                if not state.stopped:
                    account_logger.info(f"Connection closed normally by the server: {e}")
                return None
            except Exception as e:
                if state.stopped:
                    return None
                if state.websocket is websocket:
                    state.websocket = None
                raise SessionError(f"Read failed: {e}") from e

            if isinstance(raw, bytes):
                continue

            await self.router.route(state.account, raw)

        return None

    async def _recv(self, websocket, state: ConnectionState):
        """Receive one frame. The deadline moves forward whenever a pong arrives."""
        started = time.monotonic()
        recv_task = asyncio.ensure_future(websocket.recv())
        try:
            while True:
                deadline = max(started, state.last_pong) + self.config.read_timeout_seconds
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise asyncio.TimeoutError(
                        f"No data for {self.config.read_timeout_seconds:.0f}s"
                    )
                done, _ = await asyncio.wait({recv_task}, timeout=remaining)
                if done:
                    return recv_task.result()
        finally:
            if not recv_task.done():
                recv_task.cancel()
