#!/usr/bin/env python
"""
Main entry point for the kart checkpoint tracker.
Run with: python . [command]
"""
import sys
import argparse
import os
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))


def run_authority(args):
    from authority.server import RaceAuthorityServer

    server = RaceAuthorityServer(
        host=args.host,
        port=args.port,
        checkpoints_per_lap=args.checkpoints,
        total_laps=args.laps
    )
    server.run()


def run_check(args, config) -> int:
    """Connect, print what the authority announces, disconnect."""
    from tracker.coordinator import RaceCoordinator

    coordinator = RaceCoordinator(config)

    try:
        connected = coordinator.connect(args.url).result(timeout=config.authority.connect_timeout + 1)
        if not connected:
            print(f"[CHECK] Could not connect to {args.url or config.authority.url}")
            return 1

        # Give the init frame time to arrive
        time.sleep(args.wait)

        print(f"[CHECK] Race status: {coordinator.session.race_status.value}")
        names = coordinator.identities.names()
        print(f"[CHECK] Racers ({len(names)}):")
        for name in names:
            print(f"  {name} -> {coordinator.identities.lookup_id(name)}")
        return 0
    finally:
        coordinator.stop()


def main():
    parser = argparse.ArgumentParser(
        description="Kart checkpoint tracker - region detection and race authority sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python . authority                           # Run the race authority
  python . authority --port 3000 --laps 5
  python . check --url ws://localhost:3000/ws  # Check an authority
  python . --version                           # Show version
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version="Kart Checkpoint Tracker 1.0.0"
    )

    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)"
    )

    subparsers = parser.add_subparsers(dest="command")

    authority = subparsers.add_parser("authority", help="Run the race authority server")
    authority.add_argument(
        "--host",
        default=None,
        help="Server host"
    )
    authority.add_argument(
        "--port",
        type=int,
        default=None,
        help="Server port"
    )
    authority.add_argument(
        "--checkpoints",
        type=int,
        default=None,
        help="Checkpoints per lap"
    )
    authority.add_argument(
        "--laps",
        type=int,
        default=None,
        help="Laps to finish the race"
    )

    check = subparsers.add_parser("check", help="Connect to an authority and print its racers")
    check.add_argument(
        "--url",
        default=None,
        help="Authority WebSocket URL"
    )
    check.add_argument(
        "--config",
        default=None,
        help="Optional YAML configuration file"
    )
    check.add_argument(
        "--wait",
        type=float,
        default=1.0,
        help="Seconds to wait for the race snapshot"
    )

    args = parser.parse_args()

    # Load environment variables from .env if exists
    env_path = Path(__file__).parent / ".env"
    if env_path.exists():
        from dotenv import load_dotenv
        load_dotenv(env_path)

    from tracker.config import configure_logging, get_config

    config = get_config(getattr(args, "config", None))
    configure_logging(config, args.log_level)

    if args.command == "authority":
        from shared.constants import Defaults, RaceRules

        # CLI args win over the environment
        args.host = args.host or os.getenv("AUTHORITY_HOST", Defaults.AUTHORITY_HOST.value)
        args.port = args.port or int(os.getenv("AUTHORITY_PORT", str(Defaults.AUTHORITY_PORT.value)))
        args.checkpoints = args.checkpoints or int(
            os.getenv("CHECKPOINTS_PER_LAP", str(RaceRules.CHECKPOINTS_PER_LAP.value))
        )
        args.laps = args.laps or int(os.getenv("TOTAL_LAPS", str(RaceRules.TOTAL_LAPS.value)))

        print("[SYSTEM] Starting race authority...")
        run_authority(args)

    elif args.command == "check":
        sys.exit(run_check(args, config))

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
