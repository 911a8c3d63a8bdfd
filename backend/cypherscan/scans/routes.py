# =============================================================================
# File: cypherscan/scans/routes.py
# Description: Scan routes: submit a scan and poll its status.
#   Scans run on a background thread; POST returns 202 immediately and the
#   client polls GET /scans/<id> until status is COMPLETED or FAILED.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, jsonify, request

from cypherscan.extensions import get_orchestrator
from cypherscan.scanner.base import Finding, Scan, ScanOptions, ScanRequest, SourceType, Vote
from cypherscan.scanner.errors import ValidationError

logger = logging.getLogger(__name__)

scans_bp = Blueprint("scans", __name__, url_prefix="/scans")


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------

def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def finding_to_ui(f: Finding) -> Dict[str, Any]:
    return {
        "id": f.finding_id,
        "category": f.category,
        "severity": f.severity.value,
        "title": f.title,
        "description": f.description,
        "location": {"file": f.location.file, "line": f.location.line},
        "recommendation": f.recommendation,
        "confidence": f.confidence,
        "analyzer": f.analyzer,
        "codeSnippet": f.code_snippet,
        "references": list(f.references),
    }


def vote_to_ui(v: Vote) -> Dict[str, Any]:
    return {
        "analyzerId": v.analyzer_id,
        "groupKey": v.group_key,
        "decision": v.decision.value,
        "confidence": v.confidence,
        "rationale": v.rationale,
        "timestamp": _iso(v.timestamp),
    }


def scan_summary_to_ui(s: Scan) -> Dict[str, Any]:
    req = s.request
    return {
        "scanId": s.scan_id,
        "type": req.source_type.value,
        "repository": req.repository,
        "path": req.normalized_path or None,
        "contractAddress": req.contract_address,
        "chain": req.chain,
        "status": s.status.value,
        "progress": s.progress,
        "findingsCount": len(s.findings),
        "createdAt": _iso(s.created_at),
        "completedAt": _iso(s.completed_at),
        "error": s.error,
    }


def scan_to_ui(s: Scan) -> Dict[str, Any]:
    data = scan_summary_to_ui(s)
    data.update({
        "findings": [finding_to_ui(f) for f in s.findings],
        "votes": [vote_to_ui(v) for v in s.votes],
        "totalVotes": s.total_votes,
        "finalConfidenceScore": s.final_confidence_score,
        "consensusReached": s.consensus_reached,
        "analyzers": s.analyzers,
    })
    return data


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------

_TRUE_STRINGS = ("true", "1", "yes", "on")
_FALSE_STRINGS = ("false", "0", "no", "off", "")


def _str_field(body: Dict[str, Any], *names: str) -> Optional[str]:
    """First non-empty value among `names`, stripped. Non-strings are a 400."""
    for name in names:
        value = body.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string", field=name)
        value = value.strip()
        if value:
            return value
    return None


def _bool_option(raw: Dict[str, Any], *names: str) -> bool:
    for name in names:
        value = raw.get(name)
        if value is None:
            continue
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS + _FALSE_STRINGS:
            return value.strip().lower() in _TRUE_STRINGS
        raise ValidationError(f"options.{name} must be a boolean", field=f"options.{name}")
    return False


def _int_option(raw: Dict[str, Any], *names: str) -> Optional[int]:
    for name in names:
        value = raw.get(name)
        if value is None:
            continue
        # bool is an int subclass; `true` is not a concurrency limit
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        raise ValidationError(f"options.{name} must be an integer", field=f"options.{name}")
    return None


def _parse_options(raw: Any) -> ScanOptions:
    if raw is None:
        return ScanOptions()
    if not isinstance(raw, dict):
        raise ValidationError("options must be an object", field="options")

    analyzers = raw.get("analyzers") or []
    if isinstance(analyzers, str):
        analyzers = [a.strip() for a in analyzers.split(",") if a.strip()]
    if not isinstance(analyzers, list) or not all(isinstance(a, str) for a in analyzers):
        raise ValidationError("options.analyzers must be a list of names", field="options.analyzers")

    return ScanOptions(
        deep_scan=_bool_option(raw, "deepScan", "deep_scan"),
        include_dependencies=_bool_option(raw, "includeDependencies", "include_dependencies"),
        analyzers=tuple(analyzers),
        concurrency_limit=_int_option(raw, "concurrencyLimit", "concurrency_limit"),
    )


def scan_request_from_body(body: Dict[str, Any]) -> ScanRequest:
    raw_type = (_str_field(body, "type", "sourceType") or "github").lower()
    try:
        source_type = SourceType(raw_type)
    except ValueError:
        raise ValidationError(f"type must be 'github' or 'onchain', got {raw_type!r}", field="type")

    chain = _str_field(body, "chain")
    return ScanRequest(
        source_type=source_type,
        repository=_str_field(body, "repository", "githubRepo"),
        path=_str_field(body, "path", "githubPath") or "",
        contract_address=_str_field(body, "contractAddress", "contract_address"),
        chain=chain.lower() if chain else None,
        access_token=_str_field(body, "accessToken", "access_token"),
        options=_parse_options(body.get("options")),
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@scans_bp.post("")
def create_scan():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify(error="request body must be a JSON object"), 400

    try:
        scan_request = scan_request_from_body(body)
        scan_id = get_orchestrator().submit(scan_request)
    except ValidationError as e:
        logger.info(f"Rejected scan request: {e}")
        return jsonify(error=str(e), field=e.field), 400

    return jsonify(
        message="scan started",
        scanId=scan_id,
        status="PENDING",
    ), 202


@scans_bp.get("")
def list_scans():
    scans = get_orchestrator().list_scans()
    return jsonify([scan_summary_to_ui(s) for s in scans]), 200


@scans_bp.get("/<scan_id>")
def get_scan(scan_id: str):
    scan = get_orchestrator().get_status(scan_id)
    if scan is None:
        return jsonify(error="scan not found"), 404
    return jsonify(scan_to_ui(scan)), 200
