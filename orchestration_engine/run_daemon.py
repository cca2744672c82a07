# orchestration_engine/run_daemon.py
"""Run the orchestrator daemon."""

import logging

from orchestration_engine.config.settings import settings
from orchestration_engine.container import build_daemon
from orchestration_engine.infrastructure.sql.database import init_db

# Setup logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    init_db()

    daemon = build_daemon()
    daemon.install_signal_handlers()

    logger.info("=" * 80)
    logger.info("🚀 CAPACITY ORCHESTRATOR DAEMON")
    logger.info("=" * 80)
    logger.info(f"Database: {settings.database_url}")
    logger.info(f"Root node: {settings.root_node_id}")
    logger.info(f"Primary node: {settings.primary_node_id}")
    logger.info(f"Built-in modules: {len(daemon.builtin_modules)}")
    logger.info("")
    logger.info("Press Ctrl+C to stop")
    logger.info("=" * 80)
    logger.info("")

    daemon.initialize()
    logging.getLogger().setLevel(daemon.config.log_level.upper())
    daemon.run_forever()


if __name__ == "__main__":
    main()
