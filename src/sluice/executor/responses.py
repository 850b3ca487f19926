"""Response envelope returned by every external operation.

Responses always carry ``type``, ``data``, ``error`` and ``metadata``.
``error`` is a sanitized message: raw backing store exceptions never reach
the caller, only the public message of a Sluice exception or a generic
internal error.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sluice.core.exceptions import ErrorCodes, SluiceException

INTERNAL_ERROR_MESSAGE = "Internal error"


@dataclass
class Response:
    """Uniform operation response.

    Example:
        >>> Response.success("search_column", [{"id": 1}]).to_dict()["error"] is None
        True
    """

    type: str
    data: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, type: str, data: Any, metadata: Optional[Dict[str, Any]] = None) -> "Response":
        return cls(type=type, data=data, error=None, metadata=metadata or {})

    @classmethod
    def failure(cls, type: str, exc: BaseException, metadata: Optional[Dict[str, Any]] = None) -> "Response":
        """Build an error response, exposing only the public part of ``exc``."""
        meta = dict(metadata or {})
        if isinstance(exc, SluiceException):
            meta.update({"error_code": exc.code, "error_type": type_name(exc), "retryable": exc.retryable})
            return cls(type=type, data=None, error=exc.public_message(), metadata=meta)

        meta.update({"error_code": ErrorCodes.INTERNAL_ERROR, "retryable": False})
        return cls(type=type, data=None, error=INTERNAL_ERROR_MESSAGE, metadata=meta)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "data": self.data,
            "error": self.error,
            "metadata": self.metadata,
        }


def type_name(exc: BaseException) -> str:
    return exc.__class__.__name__
