from fastapi import FastAPI, Request
from fastapi.responses import Response
from slowapi.errors import RateLimitExceeded
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.api.router import router
from app.core.config import settings, split_csv
from app.core.logging import setup_logging
from app.core.rate_limit import limiter, rate_limit_exceeded_handler

setup_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

app = FastAPI(
    title="Vault Billing Reconciliation",
    version="0.1.0",
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

allowed_hosts = split_csv(settings.ALLOWED_HOSTS)
if not allowed_hosts:
    allowed_hosts = ["*"]
app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response: Response = await call_next(request)
    if settings.SECURITY_HEADERS_ENABLED:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        if settings.ENV != "dev":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response

app.include_router(router)

@app.get("/health")
def health():
    return {"ok": True}
