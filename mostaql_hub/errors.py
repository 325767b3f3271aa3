"""Mostaql Hub — Error Taxonomy.

  - FetchError:       transport/HTTP failure reaching a page
  - ParseError:       page retrieved but unusable (e.g. anti-bot challenge)
  - CircuitOpenError: a source is cooling down after repeated failures
  - DispatchError:    delivery to one subscriber failed

Fetch and parse errors are recovered at the category/listing level by the
scrape cycle; dispatch errors are recovered per subscriber by the hub.
None of them is fatal to the process.
"""

from __future__ import annotations

from typing import Optional


class MostaqlHubError(Exception):
    """Base class for all errors raised by this package."""


class FetchError(MostaqlHubError):
    """A page could not be retrieved (network error, HTTP error, retries exhausted)."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Failed to fetch {url}{detail}: {reason}")


class CircuitOpenError(FetchError):
    """Raised when a circuit breaker is OPEN and blocking requests."""

    def __init__(self, name: str, remaining_seconds: float) -> None:
        self.name = name
        self.remaining_seconds = remaining_seconds
        super().__init__(
            url=name,
            reason=f"circuit '{name}' is OPEN, retry in {remaining_seconds:.0f}s",
        )


class ParseError(MostaqlHubError):
    """A page was retrieved but could not be parsed.

    Attributes:
        url: The page URL.
        marker: The anti-bot marker found in the body, if that was the cause.
    """

    def __init__(self, url: str, reason: str, marker: Optional[str] = None) -> None:
        self.url = url
        self.reason = reason
        self.marker = marker
        super().__init__(f"Failed to parse {url}: {reason}")

    @property
    def is_challenge(self) -> bool:
        """Whether an anti-automation challenge page caused the failure."""
        return self.marker is not None


class DispatchError(MostaqlHubError):
    """Delivering a message to one subscriber failed."""

    def __init__(self, connection_id: str, reason: str) -> None:
        self.connection_id = connection_id
        self.reason = reason
        super().__init__(f"Dispatch to {connection_id} failed: {reason}")
