"""Database module."""

from .schema import init_db
from .gateway import PersistenceGateway, open_gateway
from .operations import SqliteGateway

__all__ = [
    "init_db",
    "PersistenceGateway",
    "open_gateway",
    "SqliteGateway",
]
