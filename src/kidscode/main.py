import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import src.kidscode.models  # registers all models with Base.metadata  # noqa: F401
from src.kidscode.csrf import CSRFRejected, get_csrf_config
from src.kidscode.database import Base, engine
from src.kidscode.routers import auth as auth_router
from src.kidscode.routers import csrf as csrf_router
from src.kidscode.routers import pages as pages_router
from src.kidscode.routers import submissions as submissions_router

logger = logging.getLogger(__name__)

_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail at startup, not on the first POST, if the CSRF settings are bad
    # (e.g. APP_ENV=production without CSRF_SECRET).
    get_csrf_config()
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="KidsCode", lifespan=lifespan)


@app.middleware("http")
async def _security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.exception_handler(CSRFRejected)
async def _csrf_rejected_handler(request: Request, exc: CSRFRejected) -> JSONResponse:
    """Map a rejected token to 403 with a code the client can act on."""
    return JSONResponse(
        status_code=403,
        content={"success": False, "message": exc.message, "code": exc.code},
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler: return clean JSON instead of leaking stack traces."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "An internal server error occurred"}},
        headers=_SECURITY_HEADERS,
    )


app.include_router(auth_router.router)
app.include_router(csrf_router.router)
app.include_router(submissions_router.router)
app.include_router(pages_router.router)


@app.get("/health")
def health():
    return {"status": "ok"}
