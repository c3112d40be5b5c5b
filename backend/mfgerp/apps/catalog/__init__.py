"""
Catalog module.

Product and material master data, plus the cached name lookup the ledgers
use to resolve item codes and units.
"""

from .router import router  # noqa: F401
from . import models  # noqa: F401
