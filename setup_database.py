"""
Setup database for Marketlive Analytics - creates the event table if it doesn't exist
"""

import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(__file__))

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.core.database import close_db, init_db


async def create_schema() -> bool:
    """Create the analytics tables on the configured database"""
    try:
        await init_db()
        print(f"[OK] Schema ready on {settings.DATABASE_URL.split('@')[-1]}")
        return True
    except SQLAlchemyError as e:
        print(f"[ERROR] Database error: {e}")
        return False
    except OSError as e:
        print(f"[ERROR] Could not reach the database: {e}")
        return False
    finally:
        await close_db()


if __name__ == "__main__":
    print("\n>>> Marketlive Analytics Database Setup")
    print("-" * 40)

    if asyncio.run(create_schema()):
        print("\n[OK] Database setup completed!")
        print("\nNext steps:")
        print("1. Run: python seed_data.py")
        print("2. Start the backend: python -m app.main")
    else:
        print("\n[ERROR] Database setup failed!")
        print("Please check DATABASE_URL and that PostgreSQL is running.")
