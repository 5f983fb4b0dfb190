"""
Error hierarchy for the backfill pipeline.
Every error carries a short `kind` used in run reports and log events.
"""

from __future__ import annotations

from typing import Any


class BackfillError(Exception):
    """Base class for all pipeline errors."""

    kind: str = "backfill"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.context}


class ConfigError(BackfillError):
    """Missing or invalid setting. Fatal at startup."""

    kind = "config"


class FetchError(BackfillError):
    """Transport failure or non-success HTTP status for one request."""

    kind = "fetch"

    def __init__(self, message: str, url: str | None = None, status: int | None = None) -> None:
        super().__init__(message, url=url, status=status)
        self.url = url
        self.status = status


class DecodeError(FetchError):
    """Response body is not a JSON list of candle rows."""

    kind = "decode"


class ParseError(BackfillError):
    """Malformed candle row or volume invariant violation."""

    kind = "parse"

    def __init__(self, message: str, row_index: int | None = None) -> None:
        super().__init__(message, row_index=row_index)
        self.row_index = row_index


class DestinationDiscoveryError(BackfillError):
    """Space enumeration failed; no destination is known."""

    kind = "destination_discovery"


class UnknownDestination(BackfillError):
    """No space was provisioned for a pair."""

    kind = "unknown_destination"

    def __init__(self, name: str) -> None:
        super().__init__(f"No destination provisioned: {name}", name=name)
        self.name = name


class StoreError(BackfillError):
    """Insert into a resolved destination failed."""

    kind = "store"


class BackfillAborted(BackfillError):
    """Run stopped on the first failure because fail_fast is enabled."""

    kind = "aborted"

    def __init__(self, message: str, report: Any, cause: BackfillError) -> None:
        super().__init__(message, cause=cause.kind)
        self.report = report
        self.cause = cause
