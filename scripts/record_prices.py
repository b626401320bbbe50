#!/usr/bin/env python3
"""
Run one record-prices pass outside the scheduler.

Usage:
    # Refresh stale prices, then snapshot every priced asset
    python scripts/record_prices.py

    # One portfolio only
    python scripts/record_prices.py --portfolio-id 3

    # Refresh pass only (no second snapshot pass)
    python scripts/record_prices.py --refresh-only
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import Session

from app.core.config import settings
from app.core.context import set_job_id
from app.db import engine
from app.services.price_resolution import PriceResolver
from app.services.price_store import PriceStore
from app.services.pricing_clients import PricingClients


async def main(portfolio_id, refresh_only: bool) -> int:
    set_job_id("record_prices_cli")
    async with PricingClients.create(settings) as clients:
        with Session(engine) as session:
            resolver = PriceResolver.from_clients(PriceStore(session), clients, settings)
            if refresh_only:
                summary = await resolver.refresh_prices(portfolio_id=portfolio_id)
                recorded = 0
            else:
                result = await resolver.record_prices(portfolio_id=portfolio_id)
                summary, recorded = result.refresh, result.snapshots_recorded

    print("=== Record Prices ===")
    print(f"Total:    {summary.total}")
    print(f"Updated:  {summary.updated}")
    print(f"Skipped:  {summary.skipped}")
    print(f"Errors:   {summary.errors}")
    print(f"Snapshots recorded: {recorded}")
    return 1 if summary.errors else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Refresh asset prices and record daily snapshots")
    parser.add_argument("--portfolio-id", type=int, default=None, help="Limit to one portfolio")
    parser.add_argument("--refresh-only", action="store_true", help="Skip the snapshot pass")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.portfolio_id, args.refresh_only)))
