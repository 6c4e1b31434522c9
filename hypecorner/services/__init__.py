"""Services package: recognition, capture, decision and collaborators."""

from .feature_matcher import FeatureMatcher, FeatureSet, KazeFeatureMatcher
from .digit_recognizer import DigitRecognizer, RegionOfInterest
from .score_engine import ScoreEngine
from .stream_resolver import StreamResolver, TwitchStreamResolver, StaticStreamResolver
from .capture_session import CaptureSession
from .watch_controller import WatchController
from .orchestra import Orchestra
from .hosting import HostingProvider, DebugHost, EmbedHost, OrchestratedHost, create_host_provider
from .hype_watcher import (
    HypeWatcher, ChannelDirectory, StaticChannelDirectory, TwitchChannelDirectory,
)

__all__ = [
    "FeatureMatcher", "FeatureSet", "KazeFeatureMatcher",
    "DigitRecognizer", "RegionOfInterest", "ScoreEngine",
    "StreamResolver", "TwitchStreamResolver", "StaticStreamResolver",
    "CaptureSession", "WatchController", "Orchestra",
    "HostingProvider", "DebugHost", "EmbedHost", "OrchestratedHost", "create_host_provider",
    "HypeWatcher", "ChannelDirectory", "StaticChannelDirectory", "TwitchChannelDirectory",
]
