#!/usr/bin/env python
"""
Sync enabled sources into the database once and exit.

Usage:
    python scripts/sync_sources.py              # every enabled source
    python scripts/sync_sources.py dramabox     # one source
    python scripts/sync_sources.py --rebuild    # then rebuild the explore index
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from strim.config import get_settings
from strim.context import AppContext
from strim.logging import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


async def main(sources: list[str], rebuild: bool) -> int:
    context = AppContext.create(get_settings())
    exit_code = 0
    try:
        if sources:
            for source in sources:
                if not context.registry.is_supported(source):
                    logger.error(f"Unsupported source: {source}")
                    exit_code = 1
                    continue
                try:
                    synced = await context.aggregator.sync_source(source)
                    logger.info(f"{source}: {synced} titles synced")
                except Exception as e:
                    logger.error(f"{source}: sync failed: {e}")
                    exit_code = 1
        else:
            result = await context.aggregator.sync_all_sources()
            logger.info(f"Synced {result.synced} titles")
            for error in result.errors:
                logger.error(f"  {error}")
            if result.errors:
                exit_code = 1

        if rebuild:
            await context.explore.rebuild()
        return exit_code
    finally:
        await context.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync source catalogues into the database")
    parser.add_argument("sources", nargs="*", help="Source keys (default: all enabled)")
    parser.add_argument("--rebuild", action="store_true", help="Rebuild the explore index afterwards")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.sources, args.rebuild)))
