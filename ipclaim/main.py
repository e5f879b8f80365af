#!/usr/bin/env python3
"""
Main entry point for running the IP claim controller.

Usage:
    # Defaults from config/default.yaml
    python -m ipclaim.main

    # Custom mask and sweep interval, seeded with resources
    python -m ipclaim.main --mask 32 --monitor-interval 10 --seed cluster.yaml

The seed file is YAML with optional "services", "ipclaims" and "ipnodes"
lists, each entry in the models' to_dict() layout.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

import yaml

from ipclaim.scheduler import IpClaimScheduler, SchedulerConfig
from ipclaim.store.memory import InMemoryStore
from ipclaim.store.models import IpClaim, IpNode, Service
from ipclaim.utils.config import Config
from ipclaim.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

SEED_SECTIONS = {
    "services": Service,
    "ipclaims": IpClaim,
    "ipnodes": IpNode,
}


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='IP claim controller - schedules external IPs onto live nodes'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='YAML configuration file merged over the defaults'
    )

    parser.add_argument(
        '--mask',
        type=str,
        default=None,
        help='Netmask bit-width for derived claim CIDRs (default: from config)'
    )

    parser.add_argument(
        '--monitor-interval',
        type=float,
        default=None,
        help='Seconds between node liveness sweeps (default: from config)'
    )

    parser.add_argument(
        '--seed',
        type=str,
        default=None,
        help='YAML file of resources to load into the store at startup'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: from config)'
    )

    parser.add_argument(
        '--log-format',
        type=str,
        default=None,
        choices=['json', 'console'],
        help='Log output format (default: from config)'
    )

    return parser.parse_args(argv)


def build_config(args) -> Config:
    """Load configuration and apply command-line overrides."""
    config = Config(args.config)

    if args.mask is not None:
        config.set("scheduler.default_mask", args.mask)
    if args.monitor_interval is not None:
        config.set("scheduler.monitor_interval_s", args.monitor_interval)
    if args.log_level is not None:
        config.set("logging.level", args.log_level)
    if args.log_format is not None:
        config.set("logging.format", args.log_format)

    return config


def load_seed(path: str) -> List[object]:
    """
    Read seed resources from a YAML file.

    Args:
        path: Seed file path

    Returns:
        Model instances, services first, then claims, then nodes
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    objects = []
    for section, model in SEED_SECTIONS.items():
        for item in data.get(section) or []:
            objects.append(model.from_dict(item))

    return objects


async def serve(config: Config, seed: Optional[List[object]] = None) -> None:
    """Run the scheduler against an in-memory store until signalled."""
    store = InMemoryStore()
    if seed:
        await store.seed(seed)

    scheduler = IpClaimScheduler(store, SchedulerConfig.from_config(config))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    try:
        await scheduler.run(stop)
    finally:
        store.close()


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_args(argv)
    config = build_config(args)

    configure_logging(
        log_level=config.get("logging.level", "INFO"),
        log_format=config.get("logging.format", "json"),
        log_output=config.get("logging.output", "stdout"),
    )

    logger.info(
        "Starting IP claim controller",
        default_mask=config.get("scheduler.default_mask"),
        monitor_interval_s=config.get("scheduler.monitor_interval_s"),
    )

    try:
        seed = load_seed(args.seed) if args.seed else None
        asyncio.run(serve(config, seed))

    except KeyboardInterrupt:
        logger.info("Received interrupt signal")

    except Exception as e:
        logger.error("Controller error", error=str(e), exc_info=True)
        sys.exit(1)

    logger.info("IP claim controller stopped")


if __name__ == '__main__':
    main()
