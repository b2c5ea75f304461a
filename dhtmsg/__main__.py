"""
Main entry point for dhtmsg.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .app import RendezvousNode
from .config import LOG_LEVELS, load_config
from .errors import ConfigError, IdentityError, StartupError
from .networking.ports import PortStrategy


def setup_logging(log_level_name: str = 'INFO', log_file: Optional[str] = None) -> logging.Logger:
    """Set up logging for the application.

    Args:
        log_level_name: The name of the logging level to use (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to write logs to in addition to stderr
    """
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(exist_ok=True, parents=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )

    logger = logging.getLogger(__name__)
    logger.debug(f"Logging initialized (log level: {log_level_name.upper()})")
    return logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dhtmsg",
        description="Tiny UDP hello over DHT peer discovery",
    )
    parser.add_argument("--id", dest="identity", help="Local identifier hex string (random if omitted)")
    parser.add_argument("--peer", help="Target peer identifier hex string to contact")
    parser.add_argument("--announce-secs", dest="announce_interval", type=float,
                        help="Re-announce interval in seconds (default: 45)")
    parser.add_argument("--poll-secs", dest="poll_interval", type=float,
                        help="Seconds between lookups (default: 5)")
    parser.add_argument("--port-strategy", choices=[s.value for s in PortStrategy],
                        help="How the hello port is chosen (default: probe)")
    parser.add_argument("--dht-port", type=int, help="UDP port for the DHT node (default: ephemeral)")
    parser.add_argument("--bootstrap", dest="bootstrap_nodes", action="append", metavar="HOST:PORT",
                        help="DHT bootstrap node; may be repeated")
    parser.add_argument("--advertise-host", help="Host to announce (default: outgoing interface address)")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS,
                        help="Set the logging level (default: INFO)")
    parser.add_argument("--log-file", help="Also write logs to this file")
    return parser


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Configuration values given on the command line."""
    keys = ("identity", "peer", "announce_interval", "poll_interval", "port_strategy",
            "dht_port", "bootstrap_nodes", "advertise_host", "log_level")
    return {key: getattr(args, key) for key in keys if getattr(args, key) is not None}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(cli_overrides(args), config_path=args.config)
    except ConfigError as e:
        setup_logging(args.log_level or 'INFO', args.log_file).error(f"invalid configuration: {e}")
        return 1

    logger = setup_logging(config.log_level, args.log_file)

    try:
        node = RendezvousNode(config)
    except IdentityError as e:
        logger.error(f"startup failed: {e}")
        return 1

    def request_shutdown(signum, frame):
        logger.info("Shutting down gracefully...")
        node.stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, request_shutdown)

    try:
        node.start()
    except StartupError as e:
        logger.error(f"startup failed: {e} ({e.__cause__})")
        node.stop()
        return 1

    try:
        while not node.wait(1.0):
            pass
    finally:
        node.stop()

    logger.info("Application exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
