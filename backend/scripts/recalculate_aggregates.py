#!/usr/bin/env python3
"""
Rebuild every dashboard aggregate row from the reviews table and drop the
cached dashboard views.

Run from backend directory:
  python scripts/recalculate_aggregates.py
"""

import asyncio
import sys
from pathlib import Path

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from sqlalchemy import select

from brandpulse.database import async_session
from brandpulse.models import ReviewSource
from brandpulse.services.aggregate_service import AggregateRecalculator


async def main():
    recalculator = AggregateRecalculator()
    async with async_session() as db:
        sources = (await db.execute(select(ReviewSource.id, ReviewSource.brand_id))).all()
        for source_id, brand_id in sources:
            aggregate = await recalculator.recalculate(db, source_id)
            await db.commit()
            await recalculator.invalidate(brand_id, source_id)
            print(f"  {source_id}: total={aggregate.total_reviews} avg={aggregate.avg_rating}")
    print(f"Recalculated {len(sources)} aggregate(s)")


if __name__ == "__main__":
    asyncio.run(main())
