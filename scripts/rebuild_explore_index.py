#!/usr/bin/env python
"""Rebuild the explore index once and exit. Safe to re-run at any time."""

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


async def main() -> int:
    context = AppContext.create(get_settings())
    try:
        result = await context.explore.rebuild()
        logger.info(f"Indexed {result.count} videos ({result.pruned} stale rows pruned) in {result.elapsed_ms}ms")
        return 0
    finally:
        await context.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
