"""Client entry point."""

import argparse
import asyncio
import logging

from ..common.config import ServerConfig
from .game_client import GameClient


def setup_logging(log_file: str) -> None:
    """Configure logging to file only (console would interfere with TUI)."""
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file),
        ],
    )
    # aiohttp's access and frame logs are noise for a game client
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def main() -> None:
    env_config = ServerConfig.from_env()

    parser = argparse.ArgumentParser(description="Tank-Talk Client")
    parser.add_argument("--host", default="localhost", help="Server host")
    parser.add_argument(
        "--port", type=int, default=env_config.port, help="Server HTTP/WebSocket port"
    )
    parser.add_argument(
        "--stream-port",
        type=int,
        default=None,
        help="Server TCP stream fallback port (default: port + 1)",
    )
    parser.add_argument(
        "--log", help="Log file path (logging disabled if not specified)"
    )
    parser.add_argument(
        "--no-audio", action="store_true", help="Disable microphone and speakers"
    )
    args = parser.parse_args()

    if args.log:
        setup_logging(args.log)
    else:
        # Suppress all logging output (no stderr spam during TUI)
        logging.getLogger().addHandler(logging.NullHandler())

    client = GameClient(
        args.host, args.port, stream_port=args.stream_port, enable_audio=not args.no_audio
    )

    async def run_client() -> None:
        if await client.connect():
            await client.run()
        else:
            await client.connection.close()
            print("Failed to connect to server")

    try:
        asyncio.run(run_client())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
