"""Server entry point."""

import argparse
import asyncio
import dataclasses
import logging

from ..common.config import ArenaConfig, GameConfig, ServerConfig
from ..common.constants import DEFAULT_HOST
from .game_server import GameServer


def main() -> None:
    env_config = ServerConfig.from_env()

    parser = argparse.ArgumentParser(description="Tank-Talk Server")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Host to bind to")
    parser.add_argument(
        "--port",
        type=int,
        default=env_config.port,
        help=f"HTTP/WebSocket port (default: $PORT or {env_config.port})",
    )
    parser.add_argument(
        "--stream-port",
        type=int,
        default=None,
        help="TCP stream fallback port (default: port + 1)",
    )
    parser.add_argument(
        "--arena",
        choices=["small", "large"],
        default="small",
        help="Arena size preset (default: small, 800x600)",
    )
    parser.add_argument("--log", help="Write logs to this file instead of stderr")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        filename=args.log,
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    config = dataclasses.replace(
        env_config, host=args.host, port=args.port, stream_port=args.stream_port
    )
    game_config = GameConfig(arena=ArenaConfig.preset(args.arena))

    server = GameServer(config, game_config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        print("\nServer stopped")


if __name__ == "__main__":
    main()
