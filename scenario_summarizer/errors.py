"""Exception types raised across the summarizer."""

from __future__ import annotations


class SummarizerError(Exception):
    """Base class for summarizer failures."""


class HostContractError(SummarizerError):
    """The host returned no chat or no metadata where one is required."""


class SummaryClientError(SummarizerError):
    """The summary transport failed or returned an unusable reply."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
