#!/usr/bin/env python3
"""
api/debug.py — Debug and observability endpoints.

Provides:
- /debug/metrics - Counters and latency histograms
- /debug/config - Sanitized configuration
"""

from fastapi import APIRouter, Request
from typing import Dict, Any
import time

from api.guards import require
from core.metrics import (
    get_all_metrics,
    get_counter,
    get_rbac_metrics,
)
from core.rbac import CAP_VIEW_DEBUG
from config import get_debug_config

router = APIRouter(tags=["debug"])


@router.get("/debug/metrics")
@require(CAP_VIEW_DEBUG)
def get_metrics(request: Request) -> Dict[str, Any]:
    """
    Get all metrics.

    Returns:
    - store and API latency histograms
    - error and storage failure counts
    - RBAC resolution, authorization and visibility counters
    """
    all_metrics = get_all_metrics()

    # Latency histograms are labelled per operation / endpoint
    performance = {
        "store": all_metrics["histograms"].get("store_latency_ms", []),
        "api": all_metrics["histograms"].get("api_call_latency_ms", []),
    }

    counters = {
        "rbac_denied": get_counter("rbac.denied"),
        "rbac_allowed": get_counter("rbac.allowed"),
        "audit_denials": get_counter("rbac.audit.denials"),
    }

    return {
        "timestamp": time.time(),
        "performance": performance,
        "counters": counters,
        "rbac": get_rbac_metrics(),
        "all_metrics": all_metrics,
    }


@router.get("/debug/config")
@require(CAP_VIEW_DEBUG)
def get_config(request: Request) -> Dict[str, Any]:
    """Current configuration with secrets removed."""
    return get_debug_config(request.app.state.config)
