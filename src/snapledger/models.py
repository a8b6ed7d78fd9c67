"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from snapledger.modules.identity.models import User  # noqa: F401
from snapledger.modules.receipts.models import Receipt  # noqa: F401
from snapledger.modules.expenses.models import Expense  # noqa: F401
