from typing import Optional

from filemanager.monitoring.logger import log


def record_error(component: str, function: str, message: str, details: Optional[dict] = None,
                 label: Optional[str] = None, request_id: Optional[str] = None,
                 storage: Optional[str] = None, severity: str = "ERROR") -> None:
    """Log a labeled operation failure. Never raises."""
    payload = dict(details or {})
    payload["function"] = function
    if label:
        payload["label"] = label
    try:
        log(severity, message, component=component, request_id=request_id, storage=storage, details=payload)
    except Exception as e:
        log("ERROR", f"Failed to record error: {e}", component="errors", request_id=request_id)
