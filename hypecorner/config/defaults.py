"""Default configuration values."""

from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    # Channel selection
    "twitch_client_id": "",
    "twitch_oauth_token": "",
    "game_name": "Tom Clancy's Rainbow Six Siege",
    "language_prefix": "en",
    "excluded_channel_prefix": "rainbow",
    "channels": [],  # fixed channel list, used instead of Twitch discovery when set
    "minimum_candidates": 1,
    "repeat_channel_minutes": 60,

    # Orchestra / hosting
    "api_name": "api",
    "api_password": "pass",
    "api_base_url": "http://localhost:3000/api/",
    "preroll_duration_ms": 1000,
    "host_provider": "orchestrated",  # orchestrated, embed, debug
    "embed_api_url": "",

    # Capture
    "ffmpeg_path": "ffmpeg",
    "sdp_path": "stream.sdp",
    "rtp_port": 1234,
    "buffer_kb": 6000,
    "transcoder_settle_seconds": 3.0,
    "target_quality": 480,

    # Recognition
    "template_path": "resources/score_template.png",
    "digit_cell_width": 128,
    "upscale_factor": 5,
    "threshold_min": 70,
    "threshold_max": 150,
    "uniqueness_threshold": 0.80,
    "scale_increment": 1.5,
    "rotation_bins": 20,
    # Ratios of the frame, calibrated on an 852x480 layout with a 10px pad
    "left_region": [363 / 852, 29 / 480, 47 / 852, 24 / 480],
    "right_region": [443 / 852, 29 / 480, 47 / 852, 24 / 480],

    # Smoothing
    "buffer_capacity": 120,
    "filter_radius": 3,
    "match_point_threshold": 2,

    # Watch timing (seconds)
    "min_frames": 10,
    "frame_timeout_seconds": 120.0,
    "scoreboard_timeout_seconds": 10.0,
    "frame_poll_interval": 0.1,
    "scoreboard_poll_interval": 1.0,
    "monitor_interval": 1.0,
    "stale_timeout_seconds": 20.0,

    # Debug and Logging Settings
    "show_windows": False,
    "debug": False,
    "log_level": "INFO",
    "log_dir": "logs",
    "log_to_file": False,
    "structured_logging": False,
}
