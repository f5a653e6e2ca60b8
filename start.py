"""
SongCast Server - Quick Start Script
Simple launcher with common options.
"""

import asyncio
import sys
import argparse
import logging

from media_server import ServerConfig, ServerStartError, build_lifecycle
from config_examples import CONFIG_DESCRIPTIONS, get_config


def setup_logging(verbose: bool = False):
    """Setup logging with optional verbose output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def run_server(config: ServerConfig, verbose: bool = False) -> int:
    """Run the server until interrupted. Returns a process exit code."""
    logger = logging.getLogger(__name__)

    lifecycle = build_lifecycle(config)
    try:
        address = await lifecycle.start()
    except ServerStartError as e:
        logger.error(f"Server failed to start: {e}", exc_info=verbose)
        await lifecycle.stop()
        return 1

    print(f"Connect to: {address}/song/<id>\n")
    try:
        await asyncio.Event().wait()
    finally:
        await lifecycle.stop()

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='SongCast - stream your music library over the LAN',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python start.py -l ~/Music          # Serve ~/Music on port 8080
  python start.py -c low_power        # RaspberryPi preset
  python start.py -l music -p 9000    # Custom port
  python start.py --no-mdns           # Do not advertise via Zeroconf
  python start.py -v                  # Verbose logging
  python start.py --list-configs      # List available configurations
        """
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        default='basic',
        help='Configuration preset (default: basic)'
    )

    parser.add_argument(
        '-l', '--library',
        type=str,
        help='Music directory to serve (overrides config)'
    )

    parser.add_argument(
        '-n', '--name',
        type=str,
        help='Server name advertised over mDNS (overrides config)'
    )

    parser.add_argument(
        '-p', '--port',
        type=int,
        help='HTTP port (overrides config, default: 8080)'
    )

    parser.add_argument(
        '--host',
        type=str,
        help='Interface to bind (overrides config, default: 0.0.0.0)'
    )

    parser.add_argument(
        '--no-mdns',
        action='store_true',
        help='Disable mDNS service advertisement'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--list-configs',
        action='store_true',
        help='List available configurations'
    )

    return parser


def apply_overrides(config: ServerConfig, args: argparse.Namespace) -> ServerConfig:
    """Apply command-line overrides to a preset."""
    if args.library:
        config.LIBRARY_PATH = args.library

    if args.name:
        config.SERVER_NAME = args.name

    if args.port is not None:
        config.PORT = args.port

    if args.host:
        config.HOST = args.host

    if args.no_mdns:
        config.ENABLE_MDNS = False

    return config


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.list_configs:
        print("\nAvailable SongCast Configurations:\n")
        for name, desc in CONFIG_DESCRIPTIONS.items():
            print(f"  {name:15} - {desc}")
        print("\nUsage: python start.py -c <config_name>\n")
        return 0

    setup_logging(args.verbose)
    config = apply_overrides(get_config(args.config), args)

    print("\n" + "=" * 70)
    print("SongCast Server - Starting")
    print("=" * 70)
    print(f"Configuration: {args.config}")
    print(f"Server Name:   {config.SERVER_NAME}")
    print(f"Library:       {config.LIBRARY_PATH}")
    print(f"HTTP:          {config.HOST}:{config.PORT}")
    print(f"mDNS:          {'on' if config.ENABLE_MDNS else 'off'}")
    print("=" * 70 + "\n")

    try:
        return asyncio.run(run_server(config, args.verbose))
    except KeyboardInterrupt:
        print("\n\nServer stopped.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
