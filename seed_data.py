"""
Seed data for local testing
Creates sample spaces and prints a bearer token for a demo subject
"""
import asyncio
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv
load_dotenv()

import jwt

from config import settings
from domain.access import generate_secret
from domain.models import Resource
from infrastructure.database import SqlCredentialStore, get_session_maker, init_db

DEMO_SUBJECT = "demo-user-0001"

RESOURCES = [
    {
        "name": "Storage Unit A-12",
        "address": "1200 Harbor Blvd, Unit A-12",
        "lock_id": "1",
        "max_duration_minutes": 240,
        "operating_hours": {
            "mon": {"start": "06:00", "end": "22:00"},
            "tue": {"start": "06:00", "end": "22:00"},
            "wed": {"start": "06:00", "end": "22:00"},
            "thu": {"start": "06:00", "end": "22:00"},
            "fri": {"start": "06:00", "end": "22:00"},
        },
        "timezone": "America/Los_Angeles",
    },
    {
        "name": "Equipment Trailer 7",
        "address": "Lot C, Gate 3",
        "lock_id": "2",
        "max_duration_minutes": 60,
        "operating_hours": {},
    },
    {
        "name": "Parcel Kiosk (decommissioned)",
        "address": "Main St Station",
        "lock_id": "3",
        "is_active": False,
    },
]


def demo_token(subject: str, hours: int = 12) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": subject, "iat": now, "exp": now + timedelta(hours=hours)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


async def seed_database():
    """Seed the database with test data"""
    print("🌱 Starting database seeding...")

    await init_db()
    print("✅ Database initialized")

    store = SqlCredentialStore(get_session_maker())

    print("\n📍 Creating spaces...")
    for data in RESOURCES:
        resource = await store.add_resource(Resource(otp_secret=generate_secret(), **data))
        state = "active" if resource.is_active else "inactive"
        print(f"   ✅ {resource.name} (ID: {resource.id}, lock {resource.lock_id}, {state})")

    print(f"\n🔑 Bearer token for {DEMO_SUBJECT}:")
    print(f"   {demo_token(DEMO_SUBJECT)}")
    print("\n💡 Next: POST /api/v1/access with {\"resource_id\": ..., \"kind\": \"qr\"}")


if __name__ == "__main__":
    asyncio.run(seed_database())
