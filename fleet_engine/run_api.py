# fleet_engine/run_api.py
"""Run the control-plane HTTP API."""

import logging

import uvicorn

from fleet_engine.config import settings

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    logger.info("=" * 80)
    logger.info("FLEET ENGINE API")
    logger.info("=" * 80)

    uvicorn.run("fleet_engine.api.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
