"""Standard result dicts returned by node handlers."""

import time
from datetime import datetime
from typing import Any, Dict, Optional


def success_result(node_id: str, node_type: str, result: Dict[str, Any], start_time: float,
                   defer_seconds: Optional[float] = None) -> Dict[str, Any]:
    payload = {
        "success": True,
        "node_id": node_id,
        "node_type": node_type,
        "result": result,
        "execution_time": time.time() - start_time,
        "timestamp": datetime.now().isoformat(),
    }
    if defer_seconds is not None:
        payload["defer_seconds"] = defer_seconds
    return payload


def error_result(node_id: str, node_type: str, error: str, start_time: float) -> Dict[str, Any]:
    return {
        "success": False,
        "node_id": node_id,
        "node_type": node_type,
        "error": error,
        "execution_time": time.time() - start_time,
        "timestamp": datetime.now().isoformat(),
    }
