from __future__ import annotations

import argparse
import asyncio
import logging
import time

from mining_comps.ingestion.pipeline import build_pipeline

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Re-run the reconciliation batch on a fixed interval.")
    parser.add_argument(
        "--interval",
        type=int,
        default=86400,
        help="Interval in seconds between runs (default: 86400s = daily).",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    pipeline = build_pipeline()
    logger.info("Starting reconciliation loop with interval %s seconds", args.interval)

    while True:
        start = time.time()
        summary = await pipeline.run_once()
        logger.info(
            "Run completed: %s/%s written, %s flagged",
            summary.written_companies,
            summary.total_companies,
            summary.flagged_facts,
        )

        elapsed = time.time() - start
        await asyncio.sleep(max(0, args.interval - elapsed))


if __name__ == "__main__":
    asyncio.run(main())
