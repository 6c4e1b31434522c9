"""Live stream discovery.

A resolver turns a channel name into the list of playable stream variants
(ordered best quality first). The Twitch resolver fetches a playback access
token and then the HLS master playlist listing every variant.
"""
from __future__ import annotations

import logging
import random
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import requests

from ..core.entities import StreamInfo
from ..core.exceptions import StreamResolutionError

logger = logging.getLogger(__name__)

# Public client id of the Twitch web player
TWITCH_WEB_CLIENT_ID = "kimne78kx3ncx6brgo4mv6wki5h1ko"
TWITCH_GQL_URL = "https://gql.twitch.tv/gql"
TWITCH_USHER_URL = "https://usher.ttvnw.net/api/channel/hls/{channel}.m3u8"

PLAYBACK_TOKEN_QUERY = (
    "query PlaybackAccessToken($login: String!, $playerType: String!) {"
    " streamPlaybackAccessToken(channelName: $login,"
    " params: {platform: \"web\", playerBackend: \"mediaplayer\", playerType: $playerType})"
    " { value signature } }"
)

_NAME_RE = re.compile(r'NAME="([^"]*)"')
_RESOLUTION_RE = re.compile(r'RESOLUTION=([^,\s]+)')
_QUALITY_NO_RE = re.compile(r'^(\d+)p')


def quality_number(quality: str) -> int:
    """``"720p60"`` -> 720; 0 when the name carries no resolution."""
    match = _QUALITY_NO_RE.match(quality or "")
    return int(match.group(1)) if match else 0


def parse_master_playlist(text: str) -> List[StreamInfo]:
    """Parse an HLS master playlist into stream variants, best quality first.

    Each variant is described by an ``#EXT-X-MEDIA`` line (its name), an
    ``#EXT-X-STREAM-INF`` line (its resolution) and then the variant URL.
    """
    streams: List[StreamInfo] = []
    name: Optional[str] = None
    resolution: Optional[str] = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#EXT-X-MEDIA"):
            match = _NAME_RE.search(line)
            name = match.group(1) if match else None
        elif line.startswith("#EXT-X-STREAM-INF"):
            match = _RESOLUTION_RE.search(line)
            resolution = match.group(1) if match else None
        elif not line.startswith("#"):
            quality = name or ""
            streams.append(StreamInfo(quality, quality_number(quality), resolution, line))
            name, resolution = None, None

    streams.sort(key=lambda s: s.quality_no, reverse=True)
    return streams


def select_stream(streams: Sequence[StreamInfo], quality: int) -> Optional[StreamInfo]:
    """First stream whose quality number matches, or None."""
    for stream in streams:
        if stream.quality_no == quality:
            return stream
    return None


class StreamResolver(ABC):
    """Finds the playable streams of a channel."""

    @abstractmethod
    def resolve(self, channel: str) -> List[StreamInfo]:
        """Return the channel's stream variants ordered by quality descending.

        Raises:
            StreamResolutionError: If the streams could not be fetched
        """


class TwitchStreamResolver(StreamResolver):
    """Resolves Twitch channels through the web player's token and usher."""

    def __init__(self, session: Optional[requests.Session] = None,
                 client_id: str = TWITCH_WEB_CLIENT_ID, timeout: float = 10.0):
        self.session = session or requests.Session()
        self.client_id = client_id
        self.timeout = timeout

    def _access_token(self, channel: str) -> Dict[str, str]:
        payload = {
            "operationName": "PlaybackAccessToken",
            "query": PLAYBACK_TOKEN_QUERY,
            "variables": {"login": channel.lower(), "playerType": "embed"},
        }
        response = self.session.post(
            TWITCH_GQL_URL, json=payload,
            headers={"Client-ID": self.client_id}, timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        token = ((data or {}).get("data") or {}).get("streamPlaybackAccessToken")
        if not token or not token.get("value") or not token.get("signature"):
            raise StreamResolutionError(f"No playback token for {channel}; is the channel live?")
        return token

    def resolve(self, channel: str) -> List[StreamInfo]:
        try:
            token = self._access_token(channel)
            params = {
                "player": "twitchweb",
                "p": str(random.randint(100000, 999999)),
                "type": "any",
                "allow_source": "true",
                "allow_audio_only": "false",
                "allow_spectre": "false",
                "token": token["value"],
                "sig": token["signature"],
            }
            response = self.session.get(
                TWITCH_USHER_URL.format(channel=channel.lower()), params=params, timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StreamResolutionError(f"Failed to fetch streams of {channel}: {e}") from e
        except ValueError as e:
            raise StreamResolutionError(f"Malformed playback token response for {channel}: {e}") from e

        streams = parse_master_playlist(response.text)
        logger.debug(f"Resolved {len(streams)} stream(s) for {channel}: "
                     f"{[s.quality for s in streams]}")
        return streams


class StaticStreamResolver(StreamResolver):
    """Serves fixed stream URLs, e.g. recordings or a local test server."""

    def __init__(self, urls: Dict[str, str], quality: str = "480p"):
        self.urls = {name.lower(): url for name, url in urls.items()}
        self.quality = quality

    def resolve(self, channel: str) -> List[StreamInfo]:
        url = self.urls.get(channel.lower())
        if url is None:
            raise StreamResolutionError(f"No stream configured for {channel}")
        return [StreamInfo(self.quality, quality_number(self.quality), None, url)]
