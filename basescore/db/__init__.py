"""
BaseScore — Database Package
Re-exports for convenience.
"""
from basescore.db.neo4j import get_driver, get_session, init_schema, close
