from datetime import datetime
from typing import Dict, Any, Optional, Iterable


def create_health_response(
    service_name: str,
    version: str = "0.1.0",
    checks: Optional[Dict[str, bool]] = None,
    critical: Iterable[str] = (),
) -> Dict[str, Any]:
    """
    Build the health payload reported by ``/health``.

    A failing check listed in ``critical`` makes the service unhealthy; any
    other failing check only degrades it.
    """
    health_data = {
        "service": service_name,
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": version
    }

    if checks:
        health_data["checks"] = checks
        failed = [name for name, ok in checks.items() if not ok]
        if any(name in critical for name in failed):
            health_data["status"] = "unhealthy"
        elif failed:
            health_data["status"] = "degraded"
            health_data["failed_checks"] = failed

    return health_data
