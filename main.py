#!/usr/bin/env python3
"""
DeskRat Race Server - Twitch EventSub bridge for the rat race overlay

    python main.py [--config config/config.yaml] [--host 0.0.0.0] [--port 3000]

Configuration comes from the environment / .env (TWITCH_CLIENT_ID,
TWITCH_CLIENT_SECRET, YOUR_TWITCH_USER_ID, TWITCH_CHANNEL_POINT_REWARD_ID, ...)
and optionally a YAML file.
"""

import argparse
import logging
import pathlib
import sys

import uvicorn

from core.config import Settings
from web.backend.dependencies import build_services
from web.backend.main import create_app

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG = "config/config.yaml"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="DeskRat Race Server")
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help=f'Path to YAML config file (default: {DEFAULT_CONFIG} if present)'
    )
    parser.add_argument('--host', type=str, default=None, help='Bind address')
    parser.add_argument('--port', type=int, default=None, help='Listen port')
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Root log level'
    )
    return parser.parse_args(argv)


def setup_logging(level: str = "INFO", log_dir: str = "logs") -> pathlib.Path:
    """Root logger -> logs/deskrat.log + console"""
    logs_base = pathlib.Path(log_dir)
    logs_base.mkdir(parents=True, exist_ok=True)
    log_file = logs_base / "deskrat.log"

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ],
        force=True  # Override any existing config
    )
    # Keep aiohttp/uvicorn access chatter out of the main log
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return log_file


def load_settings(args) -> Settings:
    config_path = args.config
    if config_path is None and pathlib.Path(DEFAULT_CONFIG).exists():
        config_path = DEFAULT_CONFIG
    return Settings.from_yaml(
        config_path,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        settings = load_settings(args)
    except FileNotFoundError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    log_file = setup_logging(settings.log_level, settings.log_dir)
    LOGGER.info(f"📝 Logging to {log_file}")

    missing = settings.missing_required()
    if missing:
        for name in missing:
            LOGGER.error(f"❌ Missing environment variable: {name}")
        return 1
    settings.warn_optional()

    LOGGER.info(f"Twitch Client ID: {'Loaded' if settings.twitch_client_id else 'MISSING!'}")
    LOGGER.info(f"Broadcaster User ID: {'Loaded' if settings.twitch_broadcaster_id else 'MISSING!'}")
    LOGGER.info(f"Using Twitch scopes: {settings.scope_list}")

    services = build_services(settings)
    app = create_app(services)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        timeout_graceful_shutdown=int(settings.shutdown_grace),
    )
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nBye!")
