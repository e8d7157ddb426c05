from __future__ import annotations

import argparse
import logging
from pathlib import Path

from mining_comps.config import settings
from mining_comps.storage import build_store

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export the reconciled company table to CSV.")
    parser.add_argument(
        "--output",
        type=Path,
        default=settings.data_dir / "export" / "mining_companies.csv",
        help="Destination CSV path (directories will be created).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    store = build_store(settings)
    rows = store.export_csv(args.output)
    logger.info("Export complete: %s rows -> %s", rows, args.output)


if __name__ == "__main__":
    main()
