#!/usr/bin/env python3

import asyncio
from decimal import Decimal
import logging
import os
import sys

from sqlalchemy import select

# Add the project root to the Python path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from evbooking.database import db_manager
from evbooking.models import Station, User

logging.basicConfig(level=logging.INFO)


async def create_sample_data():
    """Create sample data if it doesn't exist"""

    logging.info("🚀 Starting sample data creation...")

    # Initialize database connection
    await db_manager.initialize()
    await db_manager.create_all()

    sample_stations = [
        {
            "name": "Downtown Charging Station",
            "address": "123 Main Street, Downtown",
            "latitude": 40.7128,
            "longitude": -74.0060,
            "total_slots": 4,
            "pricing_per_hour": Decimal("25.00"),
            "amenities": ["WiFi", "Cafe"],
            "max_power_kw": 50,
        },
        {
            "name": "Mall Charging Hub",
            "address": "456 Shopping Mall, City Center",
            "latitude": 40.7580,
            "longitude": -73.9855,
            "total_slots": 8,
            "pricing_per_hour": Decimal("30.00"),
            "amenities": ["Restrooms", "Shopping"],
            "max_power_kw": 150,
        },
        {
            "name": "Highway Rest Stop Charger",
            "address": "Highway 101, Exit 15",
            "latitude": 40.8448,
            "longitude": -73.8648,
            "total_slots": 2,
            "pricing_per_hour": Decimal("35.00"),
            "amenities": ["Restrooms"],
            "max_power_kw": 350,
        },
        {
            "name": "Office Building Charger",
            "address": "789 Business District",
            "latitude": 40.7061,
            "longitude": -74.0087,
            "total_slots": 1,
            "pricing_per_hour": Decimal("20.00"),
            "amenities": [],
            "max_power_kw": 22,
        },
    ]

    sample_users = [
        {
            "external_id": "user_john_doe",
            "email": "john.doe@example.com",
            "role": "user",
        },
        {
            "external_id": "user_jane_smith",
            "email": "jane.smith@example.com",
            "role": "user",
        },
        {"external_id": "user_admin", "email": "admin@evcs.com", "role": "admin"},
    ]

    async for session in db_manager.get_session():
        try:
            logging.info("📡 Creating charging stations...")
            stations_created = 0
            stations_existing = 0

            for station_data in sample_stations:
                result = await session.execute(
                    select(Station).where(Station.name == station_data["name"])
                )
                if result.scalar_one_or_none():
                    logging.info(
                        "   ⚠️  Station %s already exists - skipping",
                        station_data["name"],
                    )
                    stations_existing += 1
                else:
                    session.add(Station(**station_data))
                    logging.info("   ✅ Created station: %s", station_data["name"])
                    stations_created += 1

            logging.info("👥 Creating users...")
            users_created = 0
            users_existing = 0

            for user_data in sample_users:
                result = await session.execute(
                    select(User).where(User.external_id == user_data["external_id"])
                )
                if result.scalar_one_or_none():
                    logging.info(
                        "   ⚠️  User %s already exists - skipping",
                        user_data["external_id"],
                    )
                    users_existing += 1
                else:
                    session.add(User(**user_data))
                    logging.info(
                        "   ✅ Created user: %s (%s)",
                        user_data["external_id"],
                        user_data["role"],
                    )
                    users_created += 1

            await session.commit()

            logging.info("\n📊 Summary:")
            logging.info(
                "   Stations: %s created, %s already existed",
                stations_created,
                stations_existing,
            )
            logging.info(
                "   Users: %s created, %s already existed", users_created, users_existing
            )

        except Exception:
            logging.exception("❌ Error creating sample data")
            await session.rollback()
            raise
        finally:
            await session.close()

    await db_manager.close()
    logging.info("\n🎉 Sample data creation completed!")


if __name__ == "__main__":
    asyncio.run(create_sample_data())
