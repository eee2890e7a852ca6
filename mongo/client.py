#!/usr/bin/env python3
"""Direct MongoDB client using Motor (async PyMongo)"""

from motor.motor_asyncio import AsyncIOMotorClient
from contextlib import asynccontextmanager
import asyncio
import logging
from dotenv import load_dotenv
load_dotenv()

# Configure logging
logger = logging.getLogger(__name__)
from mongo.constants import (
    DATABASE_NAME,
    MONGODB_CONNECTION_STRING,
    MONGODB_SERVER_SELECTION_TIMEOUT_MS,
    MONGODB_SOCKET_TIMEOUT_MS,
)


class DirectMongoClient:
    """Owns the Motor client and hands out the database and transactions"""

    def __init__(self, client=None, database_name: str = DATABASE_NAME):
        # An already-built client (e.g. in tests) skips connect()
        self.client = client
        self.database_name = database_name
        self.connected = client is not None
        self._connect_lock = asyncio.Lock()

    async def connect(self):
        """Initialize MongoDB connection with a persistent connection pool"""
        try:
            async with self._connect_lock:
                if self.connected and self.client:
                    return

                self.client = AsyncIOMotorClient(
                    MONGODB_CONNECTION_STRING,
                    tz_aware=True,
                    maxPoolSize=50,
                    minPoolSize=5,
                    maxIdleTimeMS=45000,
                    serverSelectionTimeoutMS=MONGODB_SERVER_SELECTION_TIMEOUT_MS,
                    connectTimeoutMS=10000,
                    socketTimeoutMS=MONGODB_SOCKET_TIMEOUT_MS,
                )

                # Test connection
                await self.client.admin.command('ping')

                self.connected = True
                logger.info(f"Connected to MongoDB database '{self.database_name}'")

        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client:
            self.client.close()
        self.connected = False
        self.client = None

    @property
    def db(self):
        if not self.client:
            raise RuntimeError("MongoDB client not initialized. Call connect() first.")
        return self.client[self.database_name]

    @asynccontextmanager
    async def transaction(self):
        """Yield a session bound to a multi-document transaction.

        The transaction commits when the block exits normally and aborts if
        it raises.
        """
        if not self.client:
            raise RuntimeError("MongoDB client not initialized. Call connect() first.")
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session


direct_mongo_client = DirectMongoClient()
