"""Schema metadata catalog."""

from .schema import SchemaCatalog

__all__ = ["SchemaCatalog"]
