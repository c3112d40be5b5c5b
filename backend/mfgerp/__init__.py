# backend/mfgerp/__init__.py
"""
Import ORM models from each app so that Alembic and
Base.metadata.create_all() see all tables.

The actual model classes are kept in mfgerp/apps/*/models.py.
"""

from .apps.catalog import models as catalog_models    # products + materials
from .apps.ledger import models as ledger_models      # the five batch ledgers

__all__ = [
    "catalog_models",
    "ledger_models",
]
