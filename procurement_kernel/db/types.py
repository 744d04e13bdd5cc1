"""
Module: procurement_kernel.db.types
Responsibility: Annotated type aliases for column types shared across models,
    so every model declares codes, names and free text identically.  The
    concrete SQL type of each alias is bound in ``Base.type_annotation_map``.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    and selectors/.  MUST NOT import from any of those layers.
"""

from typing import Annotated

from sqlalchemy import String, Text

# Company / department codes (e.g., "ACME", "ENG")
ShortCode = Annotated[str, "short_code"]

# Enum-valued status and role columns
StatusCode = Annotated[str, "status_code"]

# Human-readable names
Name = Annotated[str, "name"]

# Request numbers: {company}-{department}-{YYYYMM}-{seq:04d}
RequestNumberStr = Annotated[str, "request_number"]

# Free text (notes, comments, reasons)
LongText = Annotated[str, "long_text"]

COLUMN_TYPES = {
    ShortCode: String(20),
    StatusCode: String(30),
    Name: String(255),
    RequestNumberStr: String(64),
    LongText: Text(),
}
