"""
Scans module: submit a scan and poll it.

Endpoints:
    POST /scans              start a scan, returns 202 {scanId, status}
    GET  /scans              summaries of retained scans
    GET  /scans/<scan_id>    full snapshot: progress, findings, votes
"""

from .routes import scans_bp

__all__ = ["scans_bp"]
