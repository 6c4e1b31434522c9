"""Command line entry point for HypeCorner."""

import argparse
import logging
import os
import sys
import threading
from typing import List, Optional, TextIO

import cv2

from . import APP_NAME, __version__
from .config import Config, RecognizerSettings, load_config, save_config
from .core.exceptions import ApplicationError, ConfigError
from .core.logging_config import configure_logging, logging_manager
from .services.digit_recognizer import DigitRecognizer, render_digit_template
from .services.hosting import create_host_provider
from .services.hype_watcher import (
    ChannelDirectory, HypeWatcher, StaticChannelDirectory, TwitchChannelDirectory,
)
from .services.orchestra import Orchestra
from .services.stream_resolver import TwitchStreamResolver
from .utils.process_utils import terminate_stray_processes

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hypecorner",
        description="Watch live matches and host the channels that reach match point.",
    )
    parser.add_argument("--config", default="config.json", help="Path to the JSON configuration")
    parser.add_argument("--env-file", default=None, help="Path to a .env file with credentials")
    parser.add_argument("--channel", help="Watch this single channel once and exit")
    parser.add_argument("--host", choices=["orchestrated", "embed", "debug"],
                        help="Override the configured hosting provider")
    parser.add_argument("--show-windows", action="store_true", help="Show the recognition overlay")
    parser.add_argument("--log-level", help="Override the configured log level")
    parser.add_argument("--max-sessions", type=int, default=None,
                        help="Stop after checking this many channels")
    parser.add_argument("--write-template", metavar="PATH",
                        help="Render a placeholder digit grid to PATH and exit; replace it with "
                             "digits cropped from the real scoreboard for reliable readings")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    if args.host:
        config.host_provider = args.host
    if args.show_windows:
        config.show_windows = True
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


def build_directory(config: Config) -> ChannelDirectory:
    if config.channels:
        return StaticChannelDirectory(config.channels)
    if config.twitch_client_id and config.twitch_oauth_token:
        return TwitchChannelDirectory(config.twitch_client_id, config.twitch_oauth_token, config.game_name)
    raise ConfigError("Configure 'channels' or Twitch credentials to find channels to watch")


def build_watcher(config: Config, single_channel: bool = False) -> HypeWatcher:
    """Assemble the watcher and its collaborators from the configuration.

    Raises:
        ConfigError: If the template, hosting provider or directory is misconfigured
    """
    recognizer = DigitRecognizer.from_template(
        config.template_path, settings=RecognizerSettings.from_config(config)
    )

    orchestra = None
    if config.host_provider == "orchestrated":
        orchestra = Orchestra(config.api_name, config.api_password, config.api_base_url,
                              preroll_duration_ms=config.preroll_duration_ms)
    host = create_host_provider(config, orchestra)

    directory = StaticChannelDirectory([]) if single_channel else build_directory(config)
    watcher = HypeWatcher(config, directory, TwitchStreamResolver(), host, recognizer, orchestra=orchestra)
    if orchestra is not None:
        orchestra.start()
    return watcher


def start_skip_listener(watcher: HypeWatcher, stream: TextIO = sys.stdin) -> threading.Thread:
    """Any line typed on the console skips the current channel."""
    def listen():
        for _ in stream:
            if watcher.stopped:
                break
            watcher.skip()

    thread = threading.Thread(target=listen, name="skip-listener", daemon=True)
    thread.start()
    return thread


def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point."""
    args = parse_args(argv)

    if args.write_template:
        cv2.imwrite(args.write_template, render_digit_template())
        print(f"Digit template written to {args.write_template}")
        return 0

    if not os.path.isfile(args.config):
        save_config(Config(), args.config)
        print(f"Initial configuration file created. Please edit {args.config}")
        return 0

    config = apply_overrides(load_config(args.config, args.env_file), args)
    configure_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        enable_file_logging=config.log_to_file,
        structured_logging=config.structured_logging,
    )
    logger.info(f"Starting {APP_NAME} {__version__}")
    terminate_stray_processes("ffmpeg")

    try:
        watcher = build_watcher(config, single_channel=bool(args.channel))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    start_skip_listener(watcher)
    try:
        if args.channel:
            outcome = watcher.watch_channel(args.channel)
            if outcome is None:
                logger.warning(f"{args.channel} may not be hosted")
        else:
            watcher.run(max_sessions=args.max_sessions)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except ApplicationError as e:
        logger.error(f"{APP_NAME} stopped: {e}")
        return 1
    finally:
        watcher.close()
        terminate_stray_processes("ffmpeg")
        logger.info(f"{APP_NAME} terminated")
        logging_manager.shutdown()

    return 0


if __name__ == "__main__":
    sys.exit(main())
