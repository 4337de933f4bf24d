from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


def _csp(**directives: str) -> str:
    return "; ".join(f"{name.replace('_', '-')} {value}" for name, value in directives.items())


APP_CSP = _csp(
    default_src="'self'",
    base_uri="'self'",
    frame_ancestors="'none'",
    object_src="'none'",
    script_src="'self'",
    style_src="'self' 'unsafe-inline' https://fonts.googleapis.com",
    font_src="'self' data: https://fonts.gstatic.com",
    # Slides are previewed as blobs; the recorder plays back blob: audio
    img_src="'self' data: blob:",
    media_src="'self' blob:",
    connect_src="'self' https:",
)

# Swagger UI and ReDoc load their bundles from jsDelivr
DOCS_CSP = _csp(
    default_src="'self' https://cdn.jsdelivr.net",
    base_uri="'self'",
    frame_ancestors="'none'",
    object_src="'none'",
    script_src="'self' 'unsafe-inline' https://cdn.jsdelivr.net",
    style_src="'self' 'unsafe-inline' https://cdn.jsdelivr.net",
    img_src="'self' data: https://fastapi.tiangolo.com",
    connect_src="'self'",
)

STATIC_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), geolocation=(), microphone=(self)",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
}

DOCS_PATHS = ("/docs", "/redoc", "/openapi.json")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds CSP and hardening headers, plus any rate-limit headers a route left on request.state."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        headers = response.headers
        headers["Content-Security-Policy"] = DOCS_CSP if request.url.path.startswith(DOCS_PATHS) else APP_CSP
        for name, value in STATIC_HEADERS.items():
            headers.setdefault(name, value)
        for name, value in (getattr(request.state, "rate_limit_headers", None) or {}).items():
            headers.setdefault(name, value)
        return response
