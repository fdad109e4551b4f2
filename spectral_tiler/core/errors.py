"""Error taxonomy for tile requests.

Every failure the service reports to a caller is a subclass of
TileServiceError. Each subclass carries a machine-readable ``kind``, an
HTTP-equivalent ``status_code`` and optional ``details`` (for example the
list of valid choices when a parameter is missing or unknown). The FastAPI
application registers a single exception handler that renders any of them
as a structured JSON error body.

Example:
    Raise a domain error from a service:
        >>> from spectral_tiler.core import errors
        >>> raise errors.UnknownIndex(
        ...     "Index 'FOO' not found",
        ...     details={"available_indices": ["NDVI", "EVI"]},
        ... )

    The API layer turns it into:
        >>> # HTTP 404
        >>> # {"success": false,
        >>> #  "error": {"error": "UnknownIndex",
        >>> #            "message": "Index 'FOO' not found",
        >>> #            "status_code": 404,
        >>> #            "details": {"available_indices": ["NDVI", "EVI"]}}}
"""

from __future__ import annotations

from typing import Any


class TileServiceError(Exception):
    """Base class for errors surfaced to API callers.

    Attributes:
        kind: Machine-readable error kind, defaults to the class name.
        status_code: HTTP-equivalent status code.
        message: Human readable message.
        details: Extra structured information for the caller.
    """

    kind: str = "TileServiceError"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "kind" not in cls.__dict__:
            cls.kind = cls.__name__

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error into the response ``error`` object."""
        body: dict[str, Any] = {
            "error": self.kind,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            body["details"] = self.details

        return body


class InvalidTileCoordinate(TileServiceError):
    status_code = 400


class MissingFormulaOrIndex(TileServiceError):
    status_code = 400


class UnknownIndex(TileServiceError):
    status_code = 404


class UnknownColormap(TileServiceError):
    status_code = 400


class InvalidParameter(TileServiceError):
    status_code = 400


class UnresolvedBandAlias(TileServiceError):
    status_code = 400


class ExpressionSyntaxError(TileServiceError):
    """Tokenizer or parser failure while compiling a band-algebra formula."""

    status_code = 400


class DatasetNotFound(TileServiceError):
    status_code = 404


class TileGenerationError(TileServiceError):
    """Unexpected failure while windowing, reading or encoding a tile."""

    status_code = 500


class ReprojectionError(TileGenerationError):
    """The projection capability failed to transform tile corners."""


class ExpressionEvaluationError(ValueError):
    """Evaluation of a compiled expression failed for one environment.

    Never surfaced to callers: the pixel loop records the affected pixel
    as 0 instead.
    """
