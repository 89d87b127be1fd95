# main.py
"""
Scheduled job runner.

    python main.py init
    python main.py roi [YYYY-MM-DD]
    python main.py ranks
    python main.py boosters
    python main.py reconcile
"""
import sys
import asyncio
import logging
from datetime import date

import config
from database import get_session, init_tables
from mlm_engine.services.booster_service import BoosterService
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.services.rank_service import RankService
from mlm_engine.services.roi_service import RoiService

logger = logging.getLogger(__name__)


async def runJob(jobName, sessionFactory, runDate=None):
    """Run one job in its own session and return the job's result."""
    session = sessionFactory()
    try:
        if jobName == "init":
            seeded = await RankService(session).seedRankTiers()
            session.commit()
            return {"seededRankTiers": seeded}

        if jobName == "roi":
            return await RoiService(session).runDailyDistribution(runDate)

        if jobName == "ranks":
            return await RankService(session).checkAllRanks()

        if jobName == "boosters":
            expired = await BoosterService(session).expireBoosters()
            session.commit()
            return {"expired": expired}

        if jobName == "reconcile":
            return await LedgerService(session).reconcile()

        raise ValueError(f"Unknown job: {jobName}")
    finally:
        session.close()


async def main(argv):
    if not argv:
        print(__doc__)
        return 1

    jobName = argv[0]
    runDate = date.fromisoformat(argv[1]) if len(argv) > 1 else None

    sessionFactory, engine = get_session(config.DATABASE_URL)
    init_tables(engine)

    try:
        result = await runJob(jobName, sessionFactory, runDate)
        logger.info(f"Job {jobName} finished: {result}")
    except Exception as e:
        logger.error(f"Job {jobName} failed: {e}", exc_info=True)
        return 1
    finally:
        engine.dispose()

    if jobName == "reconcile" and result["mismatches"]:
        return 2
    return 0


if __name__ == '__main__':
    config.setup_logging()
    try:
        sys.exit(asyncio.run(main(sys.argv[1:])))
    except KeyboardInterrupt:
        logger.info("Job interrupted")
