#!/usr/bin/env python3
"""
Seed database with demo analytics events for evaluators
"""
import asyncio
import os
import random
import sys
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

# Add project root to path
sys.path.insert(0, os.path.dirname(__file__))

from app.core.database import async_session, close_db, init_db
from app.core.security import create_access_token
from app.models.analytics import Actor
from app.models.base import utcnow
from app.services.analytics_service import AnalyticsService
from app.services.enrichment import EventEnricher, RequestContext, StaticGeoLocator

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148 Safari/604.1",
]
SOURCES = [None, None, "google", "instagram", "newsletter"]
PAGES = ["/", "/shop", "/live", "/deals", "/about"]


class SeedClock:
    """Clock the seeder moves back in time before each event"""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now


async def create_demo_events(days: int = 30, visitors: int = 60):
    """Simulate browsing sessions spread over the last `days` days"""
    clock = SeedClock()
    service = AnalyticsService(
        enricher=EventEnricher(StaticGeoLocator("FR", "Paris")),
        clock=clock
    )
    started = utcnow()
    user_ids = [uuid4() for _ in range(10)]
    created = 0

    async with async_session() as session:
        for _ in range(visitors):
            clock.now = started - timedelta(minutes=random.randint(1, days * 24 * 60))
            session_id = f"seed-{uuid4().hex[:12]}"
            actor = (
                Actor.identified(random.choice(user_ids))
                if random.random() < 0.4
                else Actor.anonymous(session_id)
            )
            source = random.choice(SOURCES)
            ctx = RequestContext(
                query={"utm_source": source} if source else {},
                headers={"User-Agent": random.choice(USER_AGENTS)},
                client_ip=f"203.0.113.{random.randint(1, 254)}",
                session_id=session_id,
            )

            for page in random.sample(PAGES, k=random.randint(1, 4)):
                await service.track_page_view(session, page, actor, ctx)
                clock.now += timedelta(seconds=random.randint(5, 90))
                created += 1

            product_id = random.randint(1, 20)
            await service.track_product_view(session, product_id, actor, ctx)
            created += 1

            if random.random() < 0.5:
                price = Decimal(random.randint(500, 15000)) / 100
                await service.track_add_to_cart(session, product_id, 1, price, actor, ctx)
                created += 1
                if random.random() < 0.5:
                    await service.track_purchase(
                        session, random.randint(1000, 9999), price,
                        [{"product_id": product_id, "quantity": 1}], actor, ctx
                    )
                    created += 1

            if random.random() < 0.2:
                await service.track_live_stream_view(session, random.randint(1, 5), actor, ctx)
                created += 1

    print(f"✅ Created {created} demo analytics events")


async def main():
    """Main seeding function"""
    print("🌱 Starting analytics seeding...")

    await init_db()

    try:
        await create_demo_events()

        admin_token = create_access_token(
            data={"sub": str(uuid4()), "role": "admin"},
            expires_delta=timedelta(days=1)
        )
        print("\n🎉 Analytics seeding completed successfully!")
        print("\n🔑 Admin token (valid 24h):")
        print(admin_token)

    except Exception as e:
        print(f"❌ Error seeding database: {e}")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
