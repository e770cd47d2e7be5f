"""Engine error taxonomy.

Duplicate submissions and daily-limit rejections are not errors: they are
recorded outcomes reported through ``IngestStatus``.
"""

from __future__ import annotations


class GamifyError(Exception):
    """Base class for engine errors."""


class ValidationError(GamifyError):
    """Missing or invalid input. Raised before any write."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class PersistenceError(GamifyError):
    """A required write (event or ledger entry) failed."""


class NotReadyError(GamifyError):
    """Required tables are not provisioned."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing tables: {', '.join(missing)}")
