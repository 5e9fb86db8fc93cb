"""
VideoReview entry point: python -m videoreview
"""

import argparse
import logging

import uvicorn

from . import __version__
from .config import load_config, set_config
from .log import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="videoreview",
        description="On-demand HLS transcoding for videos in object storage",
    )
    parser.add_argument("--config", "-c", help="Path to videoreview.yaml")
    parser.add_argument("--host", help="Bind address (overrides config)")
    parser.add_argument("--port", "-p", type=int, help="Port (overrides config)")
    parser.add_argument("--log-level", help="Log level (overrides config)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)

    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.log_level:
        config.logging.level = args.log_level
    set_config(config)

    setup_logging(config.logging)

    from .api import create_app

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
