"""
BaseScore Database Layer

Neo4j connection management and schema initialization.
"""
from contextlib import asynccontextmanager

from neo4j import AsyncGraphDatabase
import structlog

from basescore.config import get_settings

logger = structlog.get_logger()

_driver = None


def get_driver():
    """Get or create the async Neo4j driver (singleton)."""
    global _driver
    if _driver is None:
        settings = get_settings()
        _driver = AsyncGraphDatabase.driver(
            settings.NEO4J_URI,
            auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
        )
        logger.info("neo4j_connected", uri=settings.NEO4J_URI)
    return _driver


@asynccontextmanager
async def get_session():
    """Get a Neo4j session (async context manager)."""
    driver = get_driver()
    session = driver.session()
    try:
        yield session
    finally:
        await session.close()


async def init_schema():
    """Initialize Neo4j constraints and indexes for reputation records."""
    constraints = [
        "CREATE CONSTRAINT IF NOT EXISTS FOR (u:User) REQUIRE u.id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (u:User) REQUIRE u.primary_address IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (w:Wallet) REQUIRE w.address IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (r:Reputation) REQUIRE r.user_id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (c:TransactionCache) REQUIRE c.address IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (t:Transaction) REQUIRE t.tx_hash IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (d:DefiMetrics) REQUIRE d.address IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (v:EconomicVector) REQUIRE v.address IS UNIQUE",
    ]

    indexes = [
        "CREATE INDEX IF NOT EXISTS FOR (t:Transaction) ON (t.address)",
        "CREATE INDEX IF NOT EXISTS FOR (r:Reputation) ON (r.total_score)",
        "CREATE INDEX IF NOT EXISTS FOR (r:Reputation) ON (r.tier)",
    ]

    async with get_session() as session:
        for query in constraints + indexes:
            try:
                result = await session.run(query)
                await result.consume()
            except Exception as e:
                logger.warning("schema_init_warning", query=query[:60], error=str(e))

    logger.info("schema_initialized", constraints=len(constraints), indexes=len(indexes))


async def close():
    """Close the Neo4j driver."""
    global _driver
    if _driver:
        await _driver.close()
        _driver = None
        logger.info("neo4j_disconnected")
