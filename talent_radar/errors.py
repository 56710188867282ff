"""Talent Radar — Error Taxonomy.

Fetch errors are retried by the fetcher and surface to a run as a failed
page, except DeadlineExceededError, which cancels the run. Parse,
low-confidence and per-record persistence errors are listing-level and
only show up in run counters. Run-level failures put the run in the
``failed`` state.
"""

from __future__ import annotations

from typing import Optional


class TalentRadarError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(TalentRadarError, ValueError):
    """Raised when settings are missing or invalid."""


# ── Fetch ────────────────────────────────────────────────


class FetchError(TalentRadarError):
    """A page could not be retrieved after exhausting retries."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(f"{message} ({url})")


class FetchTimeoutError(FetchError):
    """The request timed out."""

    def __init__(self, url: str) -> None:
        super().__init__(url, "Request timed out")


class HttpStatusError(FetchError):
    """The server answered with a non-success status code."""

    def __init__(self, url: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(url, f"HTTP {status_code}")


class NetworkError(FetchError):
    """Connection-level failure (DNS, refused, reset, ...)."""

    def __init__(self, url: str, detail: str = "") -> None:
        self.detail = detail
        super().__init__(url, f"Network error: {detail}" if detail else "Network error")


class DeadlineExceededError(FetchError):
    """The run deadline left no room for another attempt.

    Attributes:
        cause: The error of the last attempt made, if any.
    """

    def __init__(self, url: str, cause: Optional[FetchError] = None) -> None:
        self.cause = cause
        message = "Deadline reached"
        if cause is not None:
            message += f" after {cause}"
        super().__init__(url, message)


# ── Extraction / persistence ─────────────────────────────


class ParseError(TalentRadarError):
    """A listing fragment could not be parsed."""


class LowConfidenceExtraction(TalentRadarError):
    """A candidate record is missing a mandatory field."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing mandatory fields: {', '.join(missing)}")


class PersistenceError(TalentRadarError):
    """A store round-trip failed for one record or run."""


# ── Runs ─────────────────────────────────────────────────


class RunFatalError(TalentRadarError):
    """The run cannot produce a useful result and must be marked failed."""


class RunRejectedError(TalentRadarError):
    """A new run could not be accepted (queue full, shutting down, ...)."""


class RunAlreadyActiveError(RunRejectedError):
    """A pending or running run already holds the source lock."""

    def __init__(self, source_id: str, run_id: Optional[str] = None) -> None:
        self.source_id = source_id
        self.run_id = run_id
        super().__init__(f"Source '{source_id}' already has an active run ({run_id})")


class UnknownSourceError(TalentRadarError, KeyError):
    """The requested source is not configured."""

    def __init__(self, source_id: str) -> None:
        self.source_id = source_id
        super().__init__(source_id)

    def __str__(self) -> str:
        return f"Unknown source '{self.source_id}'"


class UnknownRunError(TalentRadarError, KeyError):
    """No run with the given id exists."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(run_id)

    def __str__(self) -> str:
        return f"Unknown run '{self.run_id}'"


class RunNotPendingError(TalentRadarError):
    """Only pending runs can be cancelled."""

    def __init__(self, run_id: str, status: str) -> None:
        self.run_id = run_id
        self.status = status
        super().__init__(f"Run {run_id} is {status}; only pending runs can be cancelled")
