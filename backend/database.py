from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for lookups and idempotency."""
        try:
            # Identity
            try:
                await self.db.users.create_index("email", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.users.create_index("uid", unique=True)
            await self.db.profiles.create_index("uid", unique=True)
            try:
                await self.db.admins.create_index("email", unique=True)
            except Exception:
                pass

            # Businesses - one record per checkout session (payment confirm is idempotent)
            await self.db.businesses.create_index("id", unique=True)
            await self.db.businesses.create_index([("userId", 1), ("createdAt", -1)])
            await self.db.businesses.create_index("status")
            try:
                await self.db.businesses.create_index("checkoutSessionId", unique=True, sparse=True)
            except Exception:
                pass

            # Wizard snapshots - one per user; updatedAt drives stale cleanup
            await self.db.wizard_sessions.create_index("userId", unique=True)
            await self.db.wizard_sessions.create_index("updatedAt")

            # Stripe webhook idempotency - duplicate event_id must not process twice
            try:
                await self.db.stripe_events.create_index("event_id", unique=True)
            except Exception:
                pass

            # Password reset tokens - looked up by hash only
            await self.db.password_tokens.create_index("token_hash", unique=True)
            await self.db.password_tokens.create_index("uid")

            # Audit log
            await self.db.audit_logs.create_index([("user_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

@asynccontextmanager
async def get_db_context():
    """Context manager for standalone scripts to access the database.

    Usage in scripts:
        async with get_db_context() as db:
            await db.businesses.find_one(...)
    """
    client = None
    try:
        mongo_url = os.environ['MONGO_URL']
        db_name = os.environ['DB_NAME']
        client = AsyncIOMotorClient(mongo_url)
        db = client[db_name]
        await db.command("ping")
        logger.info(f"Script connected to MongoDB: {db_name}")
        yield db
    finally:
        if client:
            client.close()
            logger.info("Script MongoDB connection closed")
