"""
MongoDB Setup Script
Checks the connection and creates the engine's collections' indexes.
"""
import asyncio
from src.repositories import db_manager
from src.config import settings
from src.utils.observability import configure_logging

COLLECTIONS = ("sessions", "lead_facts", "audit_log")


async def setup_mongodb():
    """Connect, create indexes and list what each collection ended up with."""
    print("🔄 Connecting to MongoDB...")
    print(f"   Database: {settings.mongodb_database}")
    print()

    try:
        await db_manager.connect()
        await db_manager.client.admin.command("ping")
        print("✅ Connection successful!")
        print()

        db = db_manager.database

        existing_collections = await db.list_collection_names()
        print(f"📦 Existing collections: {existing_collections or 'None'}")
        print()

        print("🔨 Creating indexes...")
        await db_manager.create_indexes()
        print("✅ Indexes created successfully!")
        print()

        print("📊 Verifying indexes:")
        total = 0
        for name in COLLECTIONS:
            indexes = await db[name].index_information()
            total += len(indexes)
            print(f"   {name}: {len(indexes)} indexes")
            for idx_name in indexes:
                print(f"      - {idx_name}")

        print()
        print("🎉 MongoDB setup complete!")
        print(f"   ✅ Collections: {', '.join(COLLECTIONS)}")
        print(f"   ✅ Indexes: {total} total")
        print()

    except Exception as e:
        print(f"❌ Error: {e}")
        print()
        print("💡 Troubleshooting:")
        print("   1. Check MONGODB_URI and that the server is reachable")
        print("   2. Check that the credentials in the URI are correct")
        raise

    finally:
        await db_manager.disconnect()
        print("👋 Disconnected from MongoDB")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(setup_mongodb())
