# cypherscan/scanner/errors.py
"""
Error taxonomy for the scan pipeline.

    ValidationError     malformed ScanRequest, rejected at submit time
    NotFoundError       the locator resolved to no matching source files
    UpstreamError       the source-control / explorer provider failed
    AnalyzerError       a single analyzer failed (absorbed by the dispatcher)
    InvalidTransition   an illegal scan status change (orchestration fault)

Fetch and orchestration errors end a scan in FAILED. AnalyzerError never does.
"""

from __future__ import annotations

from typing import Optional


class ScanError(Exception):
    """Base class for every error raised by the scan pipeline."""


class ValidationError(ScanError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(ScanError):
    pass


class UpstreamError(ScanError):
    """
    A remote provider call failed.

    `status` carries the provider's HTTP status when one was received,
    None for transport-level failures (DNS, timeout, connection reset).
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AnalyzerError(ScanError):
    def __init__(self, analyzer_id: str, message: str):
        super().__init__(f"{analyzer_id}: {message}")
        self.analyzer_id = analyzer_id


class InvalidTransition(ScanError):
    pass
