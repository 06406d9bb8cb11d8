from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from pushcast import __version__
from pushcast.api.routes import admin, devices, notifications
from pushcast.config import get_settings
from pushcast.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler
from pushcast.core.lifespan import lifespan
from pushcast.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="pushcast", version=__version__, lifespan=lifespan)

app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials="*" not in settings.allowed_origins, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"])

# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(admin.router, tags=["admin"])
app.include_router(devices.router, tags=["devices"])
app.include_router(notifications.router, tags=["notifications"])
