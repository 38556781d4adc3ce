import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.middleware.trustedhost import TrustedHostMiddleware

from accounts.api.router import router
from accounts.core.config import settings
from accounts.core.errors import AccountsError, ErrorKind, ValidationFailed
from accounts.core.logging import configure_logging

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title=f"{settings.APP_NAME} Accounts",
    version="0.1.0",
)

allowed_hosts = [h.strip() for h in settings.ALLOWED_HOSTS.split(",") if h.strip()]
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
        response.headers["Cache-Control"] = "no-store"
        if settings.ENV != "dev":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.exception_handler(AccountsError)
async def accounts_error_handler(request: Request, exc: AccountsError):
    if exc.kind == ErrorKind.DEPENDENCY_FAILED:
        logger.error(
            "request_failed",
            path=request.url.path,
            method=request.method,
            code=exc.code,
            cause=repr(exc.__cause__) if exc.__cause__ else None,
        )
    else:
        logger.info("request_rejected", path=request.url.path, method=request.method, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "header")]
        fields.setdefault(".".join(loc) or "body", err.get("msg", "invalid"))
    error = ValidationFailed(fields=fields)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


app.include_router(router)


@app.get("/health")
def health():
    return {"ok": True}
