# node_agent/run_agent.py
"""Run the node agent HTTP server."""

import logging

import uvicorn

from node_agent.server import app
from node_agent.settings import agent_settings

logging.basicConfig(
    level=agent_settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    logger.info(f"🚀 Starting Node Agent '{agent_settings.node_id}'...")
    logger.info(f"📍 Listening on {agent_settings.host}:{agent_settings.port}")
    logger.info(f"Capacity: {agent_settings.total_capacity}")

    uvicorn.run(
        app,
        host=agent_settings.host,
        port=agent_settings.port,
        log_level=agent_settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
