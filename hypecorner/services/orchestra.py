"""Client for the orchestra: the service that drives the embedded player.

HTTP calls change the hosted channel, trigger prerolls, publish scores and
thumbnails and query the blacklist. A websocket gateway pushes events back;
heartbeats are echoed, and every other event is forwarded as an
:class:`OrchestraEvent` on :attr:`Orchestra.events`.
"""
from __future__ import annotations

import json
import logging
import queue
import threading
import time
from typing import Callable, Dict, Optional, Sequence
from urllib.parse import urljoin, urlsplit

import requests
import websocket

from ..core.entities import EventKind, OrchestraEvent
from ..core.exceptions import OrchestraError

logger = logging.getLogger(__name__)


def gateway_url_for(base_url: str) -> str:
    """``http://host:3000/api/`` -> ``ws://host:3000/api/gateway``."""
    parts = urlsplit(base_url)
    secure = parts.scheme == "https"
    port = parts.port or (443 if secure else 80)
    path = parts.path or "/"
    if not path.endswith("/"):
        path += "/"
    return f"{'wss' if secure else 'ws'}://{parts.hostname}:{port}{path}gateway"


def parse_event(message: str) -> Optional[OrchestraEvent]:
    """Decode a gateway frame; None when it is not a JSON object."""
    try:
        obj = json.loads(message)
    except (TypeError, ValueError):
        return None
    if not isinstance(obj, dict):
        return None
    name = str(obj.get("e", ""))
    try:
        kind = EventKind(name)
    except ValueError:
        kind = EventKind.OTHER
    return OrchestraEvent(kind=kind, name=name, payload=obj.get("d"), raw=message)


class Orchestra:
    """HTTP and websocket client of the orchestra API."""

    def __init__(self, username: str, password: str, base_url: str = "http://localhost:3000/api/",
                 session: Optional[requests.Session] = None, timeout: float = 10.0,
                 preroll_duration_ms: int = 1000, reconnect_delay: float = 2.0,
                 websocket_factory: Callable[..., websocket.WebSocketApp] = websocket.WebSocketApp,
                 sleep: Callable[[float], None] = time.sleep):
        self.username = username
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.gateway_url = gateway_url_for(self.base_url)
        self.timeout = timeout
        self.preroll_duration_ms = preroll_duration_ms
        self.reconnect_delay = reconnect_delay
        self.events: "queue.Queue[OrchestraEvent]" = queue.Queue()

        self.session = session or requests.Session()
        # The orchestra expects the bare password as the authorization value
        self.session.headers["Authorization"] = password

        self._websocket_factory = websocket_factory
        self._sleep = sleep
        self._ws: Optional[websocket.WebSocketApp] = None
        self._gateway_thread: Optional[threading.Thread] = None
        self._closed = threading.Event()

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise OrchestraError(f"{method} {path} failed: {e}") from e

    def get_blacklist(self) -> Dict[str, str]:
        """Map of lower-cased channel name to blacklist reason."""
        response = self._request("GET", "blacklist")
        if not response.ok:
            raise OrchestraError(f"Failed to fetch the blacklist ({response.status_code})")
        try:
            entries = response.json()
        except ValueError as e:
            raise OrchestraError(f"Malformed blacklist: {e}") from e
        return {
            str(entry.get("name", "")).lower(): entry.get("reason") or ""
            for entry in entries or [] if isinstance(entry, dict)
        }

    def get_blacklist_reason(self, channel: str) -> Optional[str]:
        """Reason the channel is blacklisted, or None when it is not."""
        try:
            response = self._request("GET", f"blacklist/{channel}")
        except OrchestraError as e:
            logger.warning(f"Could not check the blacklist for {channel}: {e}")
            return None
        if not response.ok:
            return None
        try:
            reason = (response.json() or {}).get("reason")
        except (ValueError, AttributeError):
            return None
        return reason if reason and str(reason).strip() else None

    def change_channel(self, channel: str) -> None:
        response = self._request("POST", "orchestra/change", json={"name": channel})
        if not response.ok:
            raise OrchestraError(f"Failed to change channel to {channel} ({response.status_code})")

    def preroll(self, channel: str) -> None:
        """Ask the clients to show their splash screen before a change."""
        response = self._request("POST", "orchestra/preroll", json={"name": channel})
        logger.debug(f"Preroll for {channel} answered {response.status_code}")

    def change_channel_preroll(self, channel: str, preroll_duration_ms: Optional[int] = None) -> None:
        duration = self.preroll_duration_ms if preroll_duration_ms is None else preroll_duration_ms
        self.preroll(channel)
        self._sleep(duration / 1000.0)
        self.change_channel(channel)

    def update_scores(self, scores: Sequence[int]) -> None:
        response = self._request("POST", "orchestra/score", json=list(scores))
        if not response.ok:
            raise OrchestraError(f"Failed to update scores ({response.status_code})")

    def upload_thumbnail(self, channel: str, thumbnail: bytes, filename: str = "thumbnail.jpg") -> None:
        files = {"image": (filename, thumbnail, "image/jpeg")}
        response = self._request("POST", f"channel/{channel}/thumbnail", files=files)
        if not response.ok:
            raise OrchestraError(f"Failed to upload the thumbnail of {channel} ({response.status_code})")

    # Gateway

    def start(self) -> None:
        """Connect the gateway in the background; reconnects until closed."""
        if self._gateway_thread is not None and self._gateway_thread.is_alive():
            return
        self._closed.clear()
        self._gateway_thread = threading.Thread(target=self._gateway_loop, name="orchestra-gateway",
                                                daemon=True)
        self._gateway_thread.start()

    def _gateway_loop(self) -> None:
        while not self._closed.is_set():
            logger.info(f"Opening orchestra gateway {self.gateway_url}")
            try:
                ws = self._websocket_factory(
                    self.gateway_url,
                    on_open=self._on_open, on_message=self._on_message,
                    on_error=self._on_error, on_close=self._on_close,
                )
                self._ws = ws
                ws.run_forever(ping_interval=25, ping_timeout=10)
            except Exception as e:
                logger.error(f"Orchestra gateway failed: {e}")
            if self._closed.is_set():
                break
            logger.warning("Orchestra gateway closed, reconnecting")
            self._closed.wait(self.reconnect_delay)

    def _on_open(self, ws) -> None:
        logger.info("Orchestra gateway opened")

    def _on_message(self, ws, message: str) -> None:
        if self._closed.is_set():
            return
        logger.debug(f"Orchestra message: {message}")
        event = parse_event(message)
        if event is None:
            logger.debug("Ignoring malformed orchestra message")
            return

        if event.kind is EventKind.HEARTBEAT:
            ws.send(message)
            return
        if event.kind is EventKind.SKIP:
            logger.info("Orchestra requested to skip this channel")
        self.events.put(event)

    def _on_error(self, ws, error) -> None:
        logger.warning(f"Orchestra gateway error: {error}")

    def _on_close(self, ws, status_code=None, reason=None) -> None:
        logger.debug(f"Orchestra gateway closed ({status_code}: {reason})")

    def close(self) -> None:
        self._closed.set()
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                ws.close()
            except Exception as e:
                logger.debug(f"Error closing orchestra gateway: {e}")
        if self._gateway_thread is not None and self._gateway_thread is not threading.current_thread():
            self._gateway_thread.join(timeout=5.0)
        self.session.close()
