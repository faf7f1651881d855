# installops/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .client import Client
from .importer import ImportProfile, ImportRunLog
from .order import DEFAULT_ORDER_STATUS, Order
from .partner import Engineer, Partner
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    "Partner",
    "Engineer",
    "Client",
    "Order",
    "DEFAULT_ORDER_STATUS",
    # Importer models
    "ImportProfile",
    "ImportRunLog",
]
