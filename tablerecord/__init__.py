"""ActiveRecord-style table access with batched, explicitly committed writes."""

from tablerecord.db import (
    Database,
    FetchMode,
    Record,
    Relationship,
    TableSchema,
)

__version__ = "0.1.0"

__all__ = ["Database", "FetchMode", "Record", "Relationship", "TableSchema", "__version__"]
