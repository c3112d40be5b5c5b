"""
Batch ledger module.

Five parallel transaction ledgers (material receive/issue, material
consumption, production movement, product receive/issue, daily sales) that
derive per-batch running stock from dated activity records.
"""

from .router import router  # noqa: F401
from . import models  # noqa: F401
