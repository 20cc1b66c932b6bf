# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    br_sync.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# br_sync.py
import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from blockrelay.config import Config
from blockrelay.engine import SyncEngine

PROCESS_NAME = "br_sync"


def setup_logging(config: Config):
    log_dir = os.path.dirname(config.log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        handlers=[
            logging.FileHandler(config.log_file, mode='a', encoding='utf-8'),
            logging.StreamHandler()
        ]
    )


async def main_sync(config: Config, once: bool, with_parse: bool):
    """
    Starts the block synchronizer.
    - With once=True every job runs a single time and the process exits.
    - Otherwise the jobs are scheduled until a stop flag file appears.
    """
    engine = SyncEngine(config)
    logging.info(f"\n--- Starting BlockRelay for account {config.account} ---")

    try:
        if once:
            await engine.run_synchronization()
            if with_parse:
                await engine.run_parse()
        else:
            scheduler = engine.build_scheduler(PROCESS_NAME, with_parse=with_parse)
            await scheduler.run()
    except asyncio.CancelledError:
        pass

    logging.info("\n--- BlockRelay has been stopped. ---")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Upload Bitcoin blocks to the exSat chain.")
    parser.add_argument('--once', action='store_true', help="Run every job once and exit.")
    parser.add_argument('--no-parse', action='store_true', help="Do not run the block parse job.")
    parser.add_argument('--env', help="Path to an alternative .env file.")
    args = parser.parse_args(argv)

    config = Config.from_env(Path(args.env) if args.env else None)
    setup_logging(config)
    try:
        config.validate()
    except ValueError as e:
        logging.error(f"Invalid configuration: {e}")
        sys.exit(1)

    try:
        asyncio.run(main_sync(config, args.once, not args.no_parse))
    except KeyboardInterrupt:
        logging.info("\n--- BlockRelay stopped by user (Ctrl+C). ---")


if __name__ == "__main__":
    main()
