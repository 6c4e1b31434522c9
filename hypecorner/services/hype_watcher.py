"""Channel selection loop.

Keeps a queue of live channels worth checking, watches them one at a time
and hosts those that reach match point. Channels are filtered by name,
broadcast language, how recently they were checked and the orchestra
blacklist; the least watched eligible channels are checked first.
"""
from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional

import requests

from ..config.settings import Config
from ..config.types import (
    CaptureSettings, SelectionSettings, SmoothingSettings, WatchSettings,
)
from ..core.entities import ChannelListing, ScoreSnapshot, TerminationReason, WatchOutcome
from ..core.exceptions import ApplicationError, OrchestraError, StreamResolutionError
from ..core.logging_config import CorrelationContext
from .capture_session import CaptureSession
from .digit_recognizer import DigitRecognizer
from .hosting import HostingProvider
from .orchestra import Orchestra
from .score_engine import ScoreEngine
from .stream_resolver import StreamResolver
from .watch_controller import WatchController

logger = logging.getLogger(__name__)

HELIX_URL = "https://api.twitch.tv/helix/"


class ChannelDirectory(ABC):
    """Lists the channels currently live."""

    @abstractmethod
    def list_live_channels(self) -> List[ChannelListing]:
        """Return the live channels.

        Raises:
            StreamResolutionError: If the listing could not be fetched
        """


class StaticChannelDirectory(ChannelDirectory):
    """A fixed list of channels, assumed live."""

    def __init__(self, names: Iterable[str]):
        self.listings = [ChannelListing(name=name) for name in names]

    def list_live_channels(self) -> List[ChannelListing]:
        return list(self.listings)


class TwitchChannelDirectory(ChannelDirectory):
    """Live streams of one game from the Twitch Helix API."""

    def __init__(self, client_id: str, oauth_token: str, game_name: str,
                 session: Optional[requests.Session] = None, pages: int = 3, timeout: float = 10.0):
        self.game_name = game_name
        self.pages = pages
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Client-Id": client_id,
            "Authorization": f"Bearer {oauth_token}",
        })
        self._game_id: Optional[str] = None

    def _get(self, path: str, params: Dict[str, object]) -> dict:
        try:
            response = self.session.get(HELIX_URL + path, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise StreamResolutionError(f"Twitch request {path} failed: {e}") from e
        except ValueError as e:
            raise StreamResolutionError(f"Malformed Twitch response for {path}: {e}") from e

    def game_id(self) -> str:
        if self._game_id is None:
            games = self._get("games", {"name": self.game_name}).get("data") or []
            if not games:
                raise StreamResolutionError(f"Unknown game '{self.game_name}'")
            self._game_id = str(games[0]["id"])
        return self._game_id

    def list_live_channels(self) -> List[ChannelListing]:
        game_id = self.game_id()
        listings: List[ChannelListing] = []
        cursor: Optional[str] = None
        for _ in range(self.pages):
            params: Dict[str, object] = {"game_id": game_id, "first": 100}
            if cursor:
                params["after"] = cursor
            body = self._get("streams", params)
            for stream in body.get("data") or []:
                listings.append(ChannelListing(
                    name=stream.get("user_login", ""),
                    viewers=int(stream.get("viewer_count", 0)),
                    language=stream.get("language", ""),
                ))
            cursor = (body.get("pagination") or {}).get("cursor")
            if not cursor:
                break
        logger.debug(f"Twitch lists {len(listings)} live channel(s) for {self.game_name}")
        return listings


SessionFactory = Callable[[str, ScoreEngine], CaptureSession]


class HypeWatcher:
    """Finds channels, watches them and hosts the ones on match point."""

    def __init__(self, config: Config, directory: ChannelDirectory, resolver: StreamResolver,
                 host: HostingProvider, recognizer: DigitRecognizer,
                 orchestra: Optional[Orchestra] = None,
                 session_factory: Optional[SessionFactory] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.directory = directory
        self.resolver = resolver
        self.host = host
        self.recognizer = recognizer
        self.orchestra = orchestra

        self.selection = SelectionSettings.from_config(config)
        self.watch_settings = WatchSettings.from_config(config)
        self.capture_settings = CaptureSettings.from_config(config)
        self.smoothing = SmoothingSettings.from_config(config)

        self._session_factory = session_factory or self._default_session
        self._clock = clock
        self._sleep = sleep

        self.skip_event = threading.Event()
        self._stop_event = threading.Event()
        self._history: Dict[str, float] = {}
        self._queue: Deque[ChannelListing] = deque()
        self._current: Optional[CaptureSession] = None

    def _default_session(self, channel: str, engine: ScoreEngine) -> CaptureSession:
        return CaptureSession(channel, self.resolver, engine, self.capture_settings)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _fetch_blacklist(self) -> Optional[Dict[str, str]]:
        if self.orchestra is None:
            return None
        try:
            return self.orchestra.get_blacklist()
        except OrchestraError as e:
            logger.warning(f"Blacklist unavailable: {e}")
            return None

    def is_eligible(self, listing: ChannelListing, blacklist: Optional[Dict[str, str]] = None) -> bool:
        s = self.selection
        name = listing.name.lower()
        if not name:
            return False
        if s.excluded_prefix and name.startswith(s.excluded_prefix.lower()):
            return False
        # Listings without a language (static lists) are not filtered on it
        if s.language_prefix and listing.language and not listing.language.lower().startswith(s.language_prefix.lower()):
            return False
        last_watched = self._history.get(name)
        if last_watched is not None and self._clock() - last_watched <= s.repeat_channel_minutes * 60:
            return False
        if blacklist and name in blacklist:
            return False
        return True

    def eligible_channels(self) -> List[ChannelListing]:
        """Refresh the listing until enough channels pass every filter."""
        s = self.selection
        blacklist = self._fetch_blacklist()
        attempts = 0
        while True:
            try:
                listings = self.directory.list_live_channels()
            except StreamResolutionError as e:
                logger.warning(f"Could not list live channels: {e}")
                listings = []

            eligible = [listing for listing in listings if self.is_eligible(listing, blacklist)]
            logger.info(f"Found {len(eligible)} eligible channel(s) out of {len(listings)}")
            if len(eligible) >= s.minimum_candidates or self.stopped:
                return eligible

            attempts += 1
            if attempts >= s.max_refresh_attempts:
                logger.error(f"Not enough channels after {attempts} attempts, "
                             f"waiting {s.refresh_backoff_seconds}s")
                if self._stop_event.wait(s.refresh_backoff_seconds):
                    return eligible
                attempts = 0
                blacklist = self._fetch_blacklist()

    def next_channel(self) -> Optional[ChannelListing]:
        """Dequeue the next channel to check, refilling the queue when empty."""
        if not self._queue:
            eligible = self.eligible_channels()
            self._queue = deque(sorted(eligible, key=lambda listing: listing.viewers))
        if not self._queue:
            return None

        listing = self._queue.popleft()
        self._history[listing.name.lower()] = self._clock()
        logger.info(f"Dequeued {listing.name} with {listing.viewers} viewers")
        return listing

    def _publish_scores(self, snapshot: ScoreSnapshot) -> None:
        if self.orchestra is not None:
            self.orchestra.update_scores(snapshot.as_list())

    def watch_channel(self, channel: str) -> Optional[WatchOutcome]:
        """Watch one channel until it stops qualifying.

        Returns:
            The watch outcome, or None when the channel may not be hosted
        """
        with CorrelationContext(channel):
            logger.info(f"Checking channel {channel}")
            if not self.host.can_host(channel):
                return None

            engine = ScoreEngine(self.recognizer, self.smoothing, window_name=f"HypeCorner - {channel}")
            session = self._session_factory(channel, engine)
            self._current = session
            self.skip_event.clear()
            try:
                session.begin()
                controller = WatchController(
                    channel, session, engine, self.host, self.watch_settings,
                    events=self.orchestra.events if self.orchestra is not None else None,
                    cancel_event=self.skip_event,
                    on_score_update=self._publish_scores,
                    clock=self._clock, sleep=self._sleep,
                )
                outcome = controller.run()
            finally:
                session.end()
                engine.close_windows()
                self._current = None

            if outcome.reason is TerminationReason.CAPTURE_ENDED and session.last_error is not None:
                outcome.detail = f"{outcome.detail}: {session.last_error}"
            logger.info(f"Watch of {channel} finished: {outcome.to_dict()}")
            return outcome

    def skip(self) -> None:
        """Cancel the channel currently being watched."""
        logger.info("Skipping the current channel")
        self.skip_event.set()

    def run(self, max_sessions: Optional[int] = None) -> List[WatchOutcome]:
        """Watch channels until closed (or ``max_sessions`` channels were checked)."""
        logger.info("Starting watch")
        outcomes: List[WatchOutcome] = []
        checked = 0
        while not self.stopped and (max_sessions is None or checked < max_sessions):
            listing = self.next_channel()
            if listing is None:
                break
            checked += 1
            try:
                outcome = self.watch_channel(listing.name)
            except ApplicationError as e:
                logger.error(f"Failed to watch channel {listing.name}: {e}")
                continue
            if outcome is not None:
                outcomes.append(outcome)
            self._stop_event.wait(0.1)
        return outcomes

    def close(self) -> None:
        self._stop_event.set()
        self.skip_event.set()
        session = self._current
        if session is not None:
            session.close()
        if self.orchestra is not None:
            self.orchestra.close()
        self.host.close()
