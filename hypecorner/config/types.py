"""Per-component settings derived from the flat :class:`Config`.

Kept apart from ``settings.py`` so services can import them without pulling
in the loading machinery.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Tuple

if TYPE_CHECKING:
    from .settings import Config

RegionRatios = Tuple[float, float, float, float]


@dataclass(frozen=True, slots=True)
class RecognizerSettings:
    left_region: RegionRatios = (363 / 852, 29 / 480, 47 / 852, 24 / 480)
    right_region: RegionRatios = (443 / 852, 29 / 480, 47 / 852, 24 / 480)
    digit_cell_width: int = 128
    upscale_factor: int = 5
    threshold_min: int = 70
    threshold_max: int = 150
    uniqueness_threshold: float = 0.80
    scale_increment: float = 1.5
    rotation_bins: int = 20
    min_matches_for_geometry: int = 4

    @classmethod
    def from_config(cls, cfg: 'Config') -> 'RecognizerSettings':
        return cls(
            left_region=tuple(float(v) for v in cfg.left_region),
            right_region=tuple(float(v) for v in cfg.right_region),
            digit_cell_width=int(cfg.digit_cell_width),
            upscale_factor=int(cfg.upscale_factor),
            threshold_min=int(cfg.threshold_min),
            threshold_max=int(cfg.threshold_max),
            uniqueness_threshold=float(cfg.uniqueness_threshold),
            scale_increment=float(cfg.scale_increment),
            rotation_bins=int(cfg.rotation_bins),
        )


@dataclass(frozen=True, slots=True)
class SmoothingSettings:
    buffer_capacity: int = 120
    filter_radius: int = 3
    match_point_threshold: int = 2
    show_windows: bool = False

    @classmethod
    def from_config(cls, cfg: 'Config') -> 'SmoothingSettings':
        return cls(
            buffer_capacity=int(cfg.buffer_capacity),
            filter_radius=int(cfg.filter_radius),
            match_point_threshold=int(cfg.match_point_threshold),
            show_windows=bool(cfg.show_windows),
        )


@dataclass(frozen=True, slots=True)
class CaptureSettings:
    ffmpeg_path: str = "ffmpeg"
    sdp_path: str = "stream.sdp"
    rtp_port: int = 1234
    buffer_kb: int = 6000
    settle_seconds: float = 3.0
    target_quality: int = 480
    join_timeout: float = 5.0
    grab_retry_delay: float = 0.01

    @classmethod
    def from_config(cls, cfg: 'Config') -> 'CaptureSettings':
        return cls(
            ffmpeg_path=cfg.ffmpeg_path,
            sdp_path=cfg.sdp_path,
            rtp_port=int(cfg.rtp_port),
            buffer_kb=int(cfg.buffer_kb),
            settle_seconds=float(cfg.transcoder_settle_seconds),
            target_quality=int(cfg.target_quality),
        )


@dataclass(frozen=True, slots=True)
class WatchSettings:
    min_frames: int = 10
    frame_timeout: float = 120.0
    scoreboard_timeout: float = 10.0
    frame_poll_interval: float = 0.1
    scoreboard_poll_interval: float = 1.0
    monitor_interval: float = 1.0
    stale_timeout: float = 20.0

    @classmethod
    def from_config(cls, cfg: 'Config') -> 'WatchSettings':
        return cls(
            min_frames=int(cfg.min_frames),
            frame_timeout=float(cfg.frame_timeout_seconds),
            scoreboard_timeout=float(cfg.scoreboard_timeout_seconds),
            frame_poll_interval=float(cfg.frame_poll_interval),
            scoreboard_poll_interval=float(cfg.scoreboard_poll_interval),
            monitor_interval=float(cfg.monitor_interval),
            stale_timeout=float(cfg.stale_timeout_seconds),
        )


@dataclass(frozen=True, slots=True)
class SelectionSettings:
    language_prefix: str = "en"
    excluded_prefix: str = "rainbow"
    minimum_candidates: int = 1
    repeat_channel_minutes: float = 60.0
    max_refresh_attempts: int = 20
    refresh_backoff_seconds: float = 60.0

    @classmethod
    def from_config(cls, cfg: 'Config') -> 'SelectionSettings':
        return cls(
            language_prefix=cfg.language_prefix,
            excluded_prefix=cfg.excluded_channel_prefix,
            minimum_candidates=int(cfg.minimum_candidates),
            repeat_channel_minutes=float(cfg.repeat_channel_minutes),
        )


__all__ = [
    "RegionRatios", "RecognizerSettings", "SmoothingSettings", "CaptureSettings",
    "WatchSettings", "SelectionSettings",
]
