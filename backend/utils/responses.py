from typing import Any, Dict, List, Optional
from fastapi.responses import JSONResponse
from core.errors import ServiceResult

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

def no_store_json(data, status_code: int = 200, headers: Optional[Dict[str, str]] = None):
    """Return JSONResponse with no-store caching headers."""
    return JSONResponse(content=data, status_code=status_code, headers={**NO_STORE_HEADERS, **(headers or {})})

def envelope(success: bool, message: str, data: Any = None, errors: Optional[Dict[str, List[str]]] = None) -> dict:
    """Build the uniform response body; optional keys are omitted when empty."""
    body = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if errors:
        body["errors"] = errors
    return body

def envelope_json(result: ServiceResult):
    """Render a ServiceResult as a no-store enveloped JSON response."""
    return no_store_json(
        envelope(result.success, result.message, result.data, result.errors),
        status_code=result.status_code,
    )
