# fleet_engine/run_agent_updates.py
"""Queue agent updates for every node behind the given release."""

import argparse
import logging
import sys

from fleet_engine.config import settings
from fleet_engine.container import get_container

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("version", help="release tag to roll out, e.g. v1.4.0")
    parser.add_argument(
        "--repository",
        default=settings.agent_release_repository,
        help="GitHub owner/name publishing agent releases",
    )
    args = parser.parse_args(argv)

    if not args.repository:
        logger.error("No release repository configured (FLEET_AGENT_RELEASE_REPOSITORY)")
        return 1

    jobs = get_container().node_manager.queue_agent_updates(args.version, args.repository)
    for job in jobs:
        logger.info(f"queued {job.job_type} {job.job_id} for node {job.node_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
