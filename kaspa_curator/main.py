import asyncio
import sys
from kaspa_curator.errors import FatalProviderError
from kaspa_curator.services.database import db
from kaspa_curator.services.logger import logger
from kaspa_curator.workflows.pipeline import build_pipeline

async def run_once():
    await db.init()
    pipeline = build_pipeline(db)
    summary = await pipeline.run_pipeline()
    logger.info(f"Run summary: {summary.model_dump()}")
    return summary

def main():
    try:
        asyncio.run(run_once())
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except FatalProviderError as e:
        logger.error(f"Judge quota exhausted, aborting: {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
