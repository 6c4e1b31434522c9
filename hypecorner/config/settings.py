"""Configuration dataclass and loading utilities.

Provides a strongly-typed configuration object that can be injected into
services instead of relying on a global module-level dictionary.
Environment variables (see ``env_config``) override credentials and paths
from the JSON file; credentials that came from the environment are never
written back to disk.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
import json, os, logging
from .defaults import DEFAULT_CONFIG
from .env_config import load_environment_config, EnvironmentConfig, EnvironmentError

logger = logging.getLogger(__name__)

_INTERNAL_FIELDS = ('extra', '_env_credentials')


@dataclass(slots=True)
class Config:
    # Channel selection
    twitch_client_id: str = DEFAULT_CONFIG["twitch_client_id"]
    twitch_oauth_token: str = DEFAULT_CONFIG["twitch_oauth_token"]
    game_name: str = DEFAULT_CONFIG["game_name"]
    language_prefix: str = DEFAULT_CONFIG["language_prefix"]
    excluded_channel_prefix: str = DEFAULT_CONFIG["excluded_channel_prefix"]
    channels: List[str] = field(default_factory=list)
    minimum_candidates: int = DEFAULT_CONFIG["minimum_candidates"]
    repeat_channel_minutes: float = DEFAULT_CONFIG["repeat_channel_minutes"]

    # Orchestra / hosting
    api_name: str = DEFAULT_CONFIG["api_name"]
    api_password: str = DEFAULT_CONFIG["api_password"]
    api_base_url: str = DEFAULT_CONFIG["api_base_url"]
    preroll_duration_ms: int = DEFAULT_CONFIG["preroll_duration_ms"]
    host_provider: str = DEFAULT_CONFIG["host_provider"]
    embed_api_url: str = DEFAULT_CONFIG["embed_api_url"]

    # Capture
    ffmpeg_path: str = DEFAULT_CONFIG["ffmpeg_path"]
    sdp_path: str = DEFAULT_CONFIG["sdp_path"]
    rtp_port: int = DEFAULT_CONFIG["rtp_port"]
    buffer_kb: int = DEFAULT_CONFIG["buffer_kb"]
    transcoder_settle_seconds: float = DEFAULT_CONFIG["transcoder_settle_seconds"]
    target_quality: int = DEFAULT_CONFIG["target_quality"]

    # Recognition
    template_path: str = DEFAULT_CONFIG["template_path"]
    digit_cell_width: int = DEFAULT_CONFIG["digit_cell_width"]
    upscale_factor: int = DEFAULT_CONFIG["upscale_factor"]
    threshold_min: int = DEFAULT_CONFIG["threshold_min"]
    threshold_max: int = DEFAULT_CONFIG["threshold_max"]
    uniqueness_threshold: float = DEFAULT_CONFIG["uniqueness_threshold"]
    scale_increment: float = DEFAULT_CONFIG["scale_increment"]
    rotation_bins: int = DEFAULT_CONFIG["rotation_bins"]
    left_region: List[float] = field(default_factory=lambda: list(DEFAULT_CONFIG["left_region"]))
    right_region: List[float] = field(default_factory=lambda: list(DEFAULT_CONFIG["right_region"]))

    # Smoothing
    buffer_capacity: int = DEFAULT_CONFIG["buffer_capacity"]
    filter_radius: int = DEFAULT_CONFIG["filter_radius"]
    match_point_threshold: int = DEFAULT_CONFIG["match_point_threshold"]

    # Watch timing
    min_frames: int = DEFAULT_CONFIG["min_frames"]
    frame_timeout_seconds: float = DEFAULT_CONFIG["frame_timeout_seconds"]
    scoreboard_timeout_seconds: float = DEFAULT_CONFIG["scoreboard_timeout_seconds"]
    frame_poll_interval: float = DEFAULT_CONFIG["frame_poll_interval"]
    scoreboard_poll_interval: float = DEFAULT_CONFIG["scoreboard_poll_interval"]
    monitor_interval: float = DEFAULT_CONFIG["monitor_interval"]
    stale_timeout_seconds: float = DEFAULT_CONFIG["stale_timeout_seconds"]

    # Debug and logging
    show_windows: bool = DEFAULT_CONFIG["show_windows"]
    debug: bool = DEFAULT_CONFIG["debug"]
    log_level: str = DEFAULT_CONFIG["log_level"]
    log_dir: str = DEFAULT_CONFIG["log_dir"]
    log_to_file: bool = DEFAULT_CONFIG["log_to_file"]
    structured_logging: bool = DEFAULT_CONFIG["structured_logging"]

    # Names of credential fields that were supplied by the environment
    _env_credentials: List[str] = field(default_factory=list)

    # Arbitrary extra values retained for forward compatibility
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        # merge extra keys at top-level for saving
        extra = d.pop("extra", {})
        d.pop("_env_credentials", None)
        d.update(extra)
        return d


def load_config(path: str = "config.json", env_file: Optional[str] = None) -> Config:
    """Load configuration from a JSON file merged over the defaults.

    Args:
        path: Path to config.json file
        env_file: Path to .env file (optional)

    Returns:
        Config: Loaded and validated configuration
    """
    data: Dict[str, Any] = {}
    env_config: Optional[EnvironmentConfig] = None

    # Environment first; it has the highest priority
    try:
        env_config = load_environment_config(env_file)
    except EnvironmentError as e:
        logger.warning(f"Environment configuration failed: {e}")

    if os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded_data = json.load(f)
            if loaded_data is None:
                logger.warning(f"Configuration file '{path}' is empty, using defaults")
            elif not isinstance(loaded_data, dict):
                logger.error(f"Configuration file '{path}' does not contain a valid JSON object, using defaults")
            else:
                data = loaded_data
                logger.info(f"Successfully loaded configuration from '{path}'")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON configuration file '{path}': {e}. Using defaults.")
        except PermissionError:
            logger.error(f"Permission denied reading configuration file '{path}'. Using defaults.")
        except OSError as e:
            logger.error(f"Unexpected error loading configuration file '{path}': {e}. Using defaults.")
    else:
        logger.info(f"Configuration file '{path}' does not exist. Using defaults.")

    merged = {**DEFAULT_CONFIG, **data}

    env_credentials: List[str] = []
    if env_config:
        merged, env_credentials = _apply_environment_overrides(merged, env_config)

    merged = _sanitize_config_values(merged)

    # capture unknown keys
    known = [k for k in Config.__dataclass_fields__ if k not in _INTERNAL_FIELDS]
    extra = {k: v for k, v in merged.items() if k not in Config.__dataclass_fields__}
    if extra:
        logger.info(f"Found extra configuration keys: {list(extra.keys())}")

    cfg = Config(**{k: merged[k] for k in known}, extra=extra)
    cfg._env_credentials = env_credentials
    return cfg


def save_config(cfg: Config, path: str = "config.json") -> None:
    """Save configuration to a JSON file.

    Credentials supplied through the environment are blanked before writing.
    A backup of the previous file is kept until the write succeeds.
    """
    backup_path = f"{path}.backup"
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as src:
                with open(backup_path, "w", encoding="utf-8") as dst:
                    dst.write(src.read())
            logger.debug(f"Created backup configuration at '{backup_path}'")
        except OSError as e:
            logger.warning(f"Failed to create configuration backup: {e}")

    config_dict = cfg.to_dict()
    for key in cfg._env_credentials:
        config_dict[key] = DEFAULT_CONFIG.get(key, "")

    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config_dict, f, indent=2, ensure_ascii=False)
        logger.info(f"Configuration saved successfully to '{path}'")
    except PermissionError:
        logger.error(f"Permission denied writing configuration file '{path}'")
        return
    except OSError as e:
        logger.error(f"OS error saving configuration file '{path}': {e}")
        return

    if os.path.exists(backup_path):
        try:
            os.remove(backup_path)
        except OSError:
            logger.debug(f"Could not remove configuration backup '{backup_path}'")


def _apply_environment_overrides(config_dict: Dict[str, Any],
                                 env_config: EnvironmentConfig) -> tuple:
    """Apply environment variable overrides to configuration.

    Returns:
        tuple: (updated configuration dict, names of credential keys overridden)
    """
    credentials: List[str] = []

    if env_config.api_password:
        config_dict["api_password"] = env_config.api_password
        credentials.append("api_password")
    if env_config.twitch_client_id:
        config_dict["twitch_client_id"] = env_config.twitch_client_id
        credentials.append("twitch_client_id")
    if env_config.twitch_oauth_token:
        config_dict["twitch_oauth_token"] = env_config.twitch_oauth_token
        credentials.append("twitch_oauth_token")

    if env_config.api_base_url:
        config_dict["api_base_url"] = env_config.api_base_url
    if env_config.ffmpeg_path:
        config_dict["ffmpeg_path"] = env_config.ffmpeg_path
    if env_config.rtp_port:
        config_dict["rtp_port"] = env_config.rtp_port

    if env_config.debug_logging:
        config_dict["debug"] = True
        config_dict["log_level"] = "DEBUG"

    logger.debug("Applied environment variable overrides to configuration")
    return config_dict, credentials


def _sanitize_config_values(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Reset out-of-range or malformed values to their defaults."""
    sanitized = config_dict.copy()

    numeric_validations = {
        'rtp_port': (1024, 65535),
        'buffer_kb': (1, 1024 * 1024),
        'transcoder_settle_seconds': (0.0, 60.0),
        'target_quality': (144, 4320),
        'digit_cell_width': (1, 4096),
        'upscale_factor': (1, 20),
        'threshold_min': (0, 255),
        'threshold_max': (0, 255),
        'uniqueness_threshold': (0.0, 1.0),
        'scale_increment': (1.01, 10.0),
        'rotation_bins': (1, 360),
        'buffer_capacity': (1, 10000),
        'filter_radius': (0, 100),
        'match_point_threshold': (0, 9),
        'min_frames': (0, 10000),
        'frame_timeout_seconds': (0.0, 86400.0),
        'scoreboard_timeout_seconds': (0.0, 3600.0),
        'frame_poll_interval': (0.001, 60.0),
        'scoreboard_poll_interval': (0.001, 60.0),
        'monitor_interval': (0.001, 60.0),
        'stale_timeout_seconds': (0.0, 3600.0),
        'minimum_candidates': (1, 100),
        'repeat_channel_minutes': (0, 10080),
        'preroll_duration_ms': (0, 60000),
    }

    for key, (min_val, max_val) in numeric_validations.items():
        if key not in sanitized:
            continue
        value = sanitized[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning(f"Value {key}={value!r} is not numeric, using default")
            sanitized[key] = DEFAULT_CONFIG.get(key)
        elif not (min_val <= value <= max_val):
            logger.warning(f"Value {key}={value} out of range [{min_val}, {max_val}], using default")
            sanitized[key] = DEFAULT_CONFIG.get(key)

    for key in ('left_region', 'right_region'):
        region = sanitized.get(key)
        if not _is_valid_region(region):
            logger.warning(f"Region {key}={region!r} is invalid, using default")
            sanitized[key] = list(DEFAULT_CONFIG[key])

    if not isinstance(sanitized.get('channels'), list):
        logger.warning("'channels' must be a list of channel names, ignoring")
        sanitized['channels'] = []

    if sanitized.get('host_provider') not in ('orchestrated', 'embed', 'debug'):
        logger.warning(f"Unknown host provider {sanitized.get('host_provider')!r}, using default")
        sanitized['host_provider'] = DEFAULT_CONFIG['host_provider']

    return sanitized


def _is_valid_region(region: Any) -> bool:
    if not isinstance(region, (list, tuple)) or len(region) != 4:
        return False
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in region):
        return False
    x, y, w, h = region
    return 0 <= x < 1 and 0 <= y < 1 and 0 < w <= 1 and 0 < h <= 1
