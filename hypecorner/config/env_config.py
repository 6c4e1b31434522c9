"""Environment variable configuration.

Credentials (orchestra password, Twitch client id and OAuth token) are
preferably provided through the process environment or a ``.env`` file
rather than the JSON config file. Values found here override the file.
"""
import os
import logging
import re
from typing import Optional, Dict, Union
from pathlib import Path
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvironmentConfig:
    """Immutable environment configuration object."""

    # Orchestra
    api_password: Optional[str]
    api_base_url: Optional[str]

    # Twitch
    twitch_client_id: Optional[str]
    twitch_oauth_token: Optional[str]

    # Capture
    ffmpeg_path: Optional[str]
    rtp_port: Optional[int]

    # Application
    debug_logging: bool

    @property
    def has_twitch_credentials(self) -> bool:
        return bool(self.twitch_client_id and self.twitch_oauth_token)


class EnvironmentError(Exception):
    """Custom exception for environment configuration errors."""
    pass


class EnvironmentValidator:
    """Validates environment variable values."""

    URL_PATTERN = re.compile(r'^https?://[^\s/$.?#][^\s]*$', re.IGNORECASE)
    TOKEN_PATTERN = re.compile(r'^[0-9A-Za-z_\-]{8,}$')

    @classmethod
    def validate_url(cls, url: str) -> bool:
        """Validate an http(s) base URL.

        Args:
            url: The URL to validate

        Returns:
            bool: True if valid format, False otherwise
        """
        return bool(url) and bool(cls.URL_PATTERN.match(url))

    @classmethod
    def validate_token(cls, token: str) -> bool:
        if not token or not isinstance(token, str):
            return False
        if not cls.TOKEN_PATTERN.match(token):
            logger.warning("Token does not match the expected format")
            return False
        return True

    @classmethod
    def validate_numeric_range(cls, value: Union[str, int, float],
                              min_val: Optional[Union[int, float]] = None,
                              max_val: Optional[Union[int, float]] = None,
                              value_type: type = int) -> Union[int, float]:
        """Validate numeric value within specified range.

        Args:
            value: The value to validate
            min_val: Minimum allowed value
            max_val: Maximum allowed value
            value_type: Expected type (int or float)

        Returns:
            The validated numeric value

        Raises:
            EnvironmentError: If validation fails
        """
        try:
            numeric_value = value_type(value)
        except (ValueError, TypeError):
            raise EnvironmentError(f"Invalid {value_type.__name__} value: {value}")

        if min_val is not None and numeric_value < min_val:
            raise EnvironmentError(f"Value {numeric_value} below minimum {min_val}")

        if max_val is not None and numeric_value > max_val:
            raise EnvironmentError(f"Value {numeric_value} above maximum {max_val}")

        return numeric_value


def load_env_file(env_path: Optional[str] = None) -> Dict[str, str]:
    """Load environment variables from .env file.

    Args:
        env_path: Path to .env file. Defaults to .env in current directory.

    Returns:
        dict: Loaded environment variables
    """
    if env_path is None:
        env_path = ".env"

    env_vars: Dict[str, str] = {}
    env_file_path = Path(env_path)

    if not env_file_path.exists():
        logger.debug(f"Environment file {env_path} not found, using system environment only")
        return env_vars

    try:
        with open(env_file_path, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()

                # Skip comments and empty lines
                if not line or line.startswith('#'):
                    continue

                if '=' in line:
                    key, value = line.split('=', 1)
                    key = key.strip()
                    value = value.strip()

                    if value.startswith('"') and value.endswith('"'):
                        value = value[1:-1]
                    elif value.startswith("'") and value.endswith("'"):
                        value = value[1:-1]

                    env_vars[key] = value
                else:
                    logger.warning(f"Invalid line format in {env_path}:{line_num}: {line}")

        logger.info(f"Loaded {len(env_vars)} variables from {env_path}")

    except OSError as e:
        logger.error(f"Error reading environment file {env_path}: {e}")

    return env_vars


def get_env_var(key: str, default: Optional[str] = None,
                required: bool = False, env_vars: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Get environment variable with validation.

    The ``.env`` file wins over the process environment.

    Raises:
        EnvironmentError: If required variable is missing
    """
    if env_vars and key in env_vars:
        value = env_vars[key]
    else:
        value = os.getenv(key, default)

    if required and (value is None or value.strip() == ""):
        raise EnvironmentError(f"Required environment variable '{key}' is not set")

    return value


def load_environment_config(env_file_path: Optional[str] = None) -> EnvironmentConfig:
    """Load and validate environment configuration.

    Args:
        env_file_path: Path to .env file

    Returns:
        EnvironmentConfig: Validated configuration object

    Raises:
        EnvironmentError: If a provided value is invalid
    """
    env_vars = load_env_file(env_file_path)
    validator = EnvironmentValidator()

    api_password = get_env_var("HYPECORNER_API_PASSWORD", env_vars=env_vars) or None

    api_base_url = get_env_var("HYPECORNER_API_BASE_URL", env_vars=env_vars) or None
    if api_base_url and not validator.validate_url(api_base_url):
        raise EnvironmentError(f"Invalid orchestra base URL: {api_base_url}")

    client_id = get_env_var("TWITCH_CLIENT_ID", env_vars=env_vars) or None
    if client_id and not validator.validate_token(client_id):
        logger.warning("Ignoring malformed TWITCH_CLIENT_ID")
        client_id = None

    oauth_token = get_env_var("TWITCH_OAUTH_TOKEN", env_vars=env_vars) or None
    if oauth_token and oauth_token.lower().startswith("oauth:"):
        oauth_token = oauth_token[len("oauth:"):]
    if oauth_token and not validator.validate_token(oauth_token):
        logger.warning("Ignoring malformed TWITCH_OAUTH_TOKEN")
        oauth_token = None

    ffmpeg_path = get_env_var("FFMPEG_PATH", env_vars=env_vars) or None

    rtp_port: Optional[int] = None
    rtp_port_str = get_env_var("HYPECORNER_RTP_PORT", env_vars=env_vars)
    if rtp_port_str:
        rtp_port = validator.validate_numeric_range(rtp_port_str, 1024, 65535, int)

    debug_str = get_env_var("DEBUG_LOGGING", "false", env_vars=env_vars)
    debug_logging = debug_str.lower() in ('true', '1', 'yes', 'on')

    config = EnvironmentConfig(
        api_password=api_password,
        api_base_url=api_base_url,
        twitch_client_id=client_id,
        twitch_oauth_token=oauth_token,
        ffmpeg_path=ffmpeg_path,
        rtp_port=rtp_port,
        debug_logging=debug_logging,
    )

    logger.debug(
        f"Environment configuration loaded (twitch credentials: {config.has_twitch_credentials})"
    )
    return config


__all__ = [
    "EnvironmentConfig",
    "EnvironmentError",
    "EnvironmentValidator",
    "load_environment_config",
    "load_env_file",
    "get_env_var"
]
