"""Hosting providers: what "surfacing" a channel means."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from ..config.settings import Config
from ..core.exceptions import ConfigError, HostingError, OrchestraError
from .orchestra import Orchestra

logger = logging.getLogger(__name__)


class HostingProvider(ABC):
    """Decides whether a channel may be hosted, and hosts it."""

    @abstractmethod
    def can_host(self, channel: str) -> bool:
        """True when the channel is allowed to be hosted."""

    @abstractmethod
    def host(self, channel: str, thumbnail: Optional[bytes] = None) -> bool:
        """Host the channel.

        Returns:
            bool: True when the channel is now hosted

        Raises:
            HostingError: If the hosting backend could not be reached
        """

    def close(self) -> None:
        pass


class DebugHost(HostingProvider):
    """Hosts nothing; records and logs what it would host."""

    def __init__(self):
        self.hosted: List[str] = []

    def can_host(self, channel: str) -> bool:
        return True

    def host(self, channel: str, thumbnail: Optional[bytes] = None) -> bool:
        logger.info(f"HOSTING {channel}")
        self.hosted.append(channel)
        return True


class EmbedHost(HostingProvider):
    """Switches a self-hosted embed page through its HTTP API."""

    def __init__(self, username: str, password: str, api_url: str = "http://localhost:3000",
                 session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (username, password)

    def can_host(self, channel: str) -> bool:
        return True

    def host(self, channel: str, thumbnail: Optional[bytes] = None) -> bool:
        url = f"{self.api_url}/api/channel/{channel}"
        try:
            response = self.session.post(url, data=channel.encode("utf-8"), timeout=self.timeout)
        except requests.RequestException as e:
            raise HostingError(f"Embed API unreachable: {e}") from e
        if not response.ok:
            logger.warning(f"Embed API refused {channel} ({response.status_code})")
        return response.ok

    def close(self) -> None:
        self.session.close()


class OrchestratedHost(HostingProvider):
    """Hosts through the orchestra, honouring its blacklist."""

    def __init__(self, orchestra: Orchestra, preroll_duration_ms: Optional[int] = None):
        self.orchestra = orchestra
        self.preroll_duration_ms = preroll_duration_ms

    def can_host(self, channel: str) -> bool:
        reason = self.orchestra.get_blacklist_reason(channel)
        if reason:
            logger.warning(f"Cannot host channel {channel}: {reason}")
            return False
        return True

    def host(self, channel: str, thumbnail: Optional[bytes] = None) -> bool:
        if thumbnail:
            try:
                self.orchestra.upload_thumbnail(channel, thumbnail)
            except OrchestraError as e:
                logger.warning(f"Thumbnail upload for {channel} failed: {e}")

        try:
            self.orchestra.change_channel_preroll(channel, self.preroll_duration_ms)
        except OrchestraError as e:
            raise HostingError(f"Orchestra refused to host {channel}: {e}") from e
        return True


def create_host_provider(config: Config, orchestra: Optional[Orchestra] = None) -> HostingProvider:
    """Build the hosting provider named by ``config.host_provider``.

    Raises:
        ConfigError: If the provider is unknown or misses its dependencies
    """
    name = (config.host_provider or "").lower()
    if name == "debug":
        return DebugHost()
    if name == "embed":
        if not config.embed_api_url:
            raise ConfigError("The embed host needs 'embed_api_url'")
        return EmbedHost(config.api_name, config.api_password, config.embed_api_url)
    if name == "orchestrated":
        if orchestra is None:
            raise ConfigError("The orchestrated host needs an orchestra connection")
        return OrchestratedHost(orchestra, config.preroll_duration_ms)
    raise ConfigError(f"Unknown host provider '{config.host_provider}'")
