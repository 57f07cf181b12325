"""
Database Package - PostgreSQL with SQLAlchemy
==============================================

Relational store for organizations, users and contracts.
"""

from .models import (
    Base,
    Organization, User, Contract,
    UserRole, ContractStatus,
)
from .session import get_db, get_db_session, init_db, get_engine, reset_engine

__all__ = [
    # Base
    "Base",
    # Models
    "Organization", "User", "Contract",
    # Enums
    "UserRole", "ContractStatus",
    # Session
    "get_db", "get_db_session", "init_db", "get_engine", "reset_engine",
]
