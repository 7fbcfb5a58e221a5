import argparse
import json
import logging
import sys
from pathlib import Path

from config import SystemConfig
from core.service import RepostGuard
from utils.logging_config import log_operation, setup_logging


def initialize_directories(config: SystemConfig):
    """Create necessary directories"""
    if config.database_path != ":memory:":
        Path(config.database_path).parent.mkdir(parents=True, exist_ok=True)
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)


def serve(guard: RepostGuard, stdin=None, stdout=None):
    """Read JSON-lines events and answer each with one JSON-lines decision"""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    for result in guard.listener.listen_lines(stdin):
        stdout.write(json.dumps(result) + "\n")
        stdout.flush()


def main(argv=None):
    """Main application entry point"""
    parser = argparse.ArgumentParser(description="Repost Guard event listener")
    parser.add_argument('-c', '--config', default='config.yaml', help='Path to YAML config')
    args = parser.parse_args(argv)

    # Load configuration
    config = SystemConfig.load(args.config)

    # Setup logging
    setup_logging(config.log_level, config.log_dir)
    logger = logging.getLogger(__name__)
    logger.info("Starting Repost Guard listener")

    # Initialize directories
    initialize_directories(config)

    with RepostGuard(config) as guard:
        try:
            serve(guard)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            log_operation(logger, "listener_stopped", **guard.listener.summary())


if __name__ == "__main__":
    main()
