"""
Module: replenishment_kernel.db.types
Responsibility: Annotated column type aliases shared by every model.
Architecture position: Kernel > DB.  MUST NOT import from models/, domain/,
    services/ or selectors/.
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Unit and line prices: 38 digits, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Catalog snapshot reference; never a foreign key into a catalog table
Sku = Annotated[str, String(100)]

# Status / role / action codes
ShortCode = Annotated[str, String(50)]

# Free-text communication fields
LongText = Annotated[str, String(4000)]
