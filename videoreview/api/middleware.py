"""
HTTP middleware for VideoReview
"""

from fastapi import Request
from fastapi.responses import JSONResponse

# Reachable without an API key
PUBLIC_PATHS = ("/api/health",)


async def api_key_middleware(request: Request, call_next):
    """Check API key if configured."""
    config = request.app.state.config
    api_key = config.security.api_key
    
    if request.url.path in PUBLIC_PATHS:
        return await call_next(request)
    
    if not api_key:
        return await call_next(request)
    
    request_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
    
    if request_key != api_key:
        return JSONResponse(
            status_code=401,
            content={"error": "INVALID_API_KEY", "message": "Invalid or missing API key", "details": {}}
        )
    
    return await call_next(request)
