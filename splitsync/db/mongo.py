import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from splitsync.core.config import settings

logger = logging.getLogger(__name__)

class MongoDatabase:
    """MongoDB connection manager."""
    
    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]
    
    await create_indexes()
    logger.info(f"Connected to MongoDB: {settings.DATABASE_NAME}")

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    mongodb.client = None
    mongodb.db = None
    logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes backing the subscription queries."""
    # Roster subscription: groups where members contains the identity
    await mongodb.db["groups"].create_index("members")
    
    # Expense subscriptions, capped by most recent first
    await mongodb.db["expenses"].create_index([("participants", 1), ("created_at", -1)])
    await mongodb.db["expenses"].create_index([("paid_by", 1), ("created_at", -1)])
    await mongodb.db["expenses"].create_index([("group_id", 1), ("created_at", -1)])

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
