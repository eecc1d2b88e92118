"""HomeEasy: local services task marketplace."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from homeeasy.api.router import api_router
from homeeasy.background import background_loop
from homeeasy.config import settings
from homeeasy.content import render_response
from homeeasy.database import close_db
from homeeasy.errors import ServiceError
from homeeasy.rate_limit import limiter
from homeeasy.state import AppState, build_state, open_store

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("homeeasy")


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: AppState | None = getattr(app.state, "services", None)
    # State installed before startup (tests, embedding) is left to its owner.
    owned = services is None
    if owned:
        services = build_state(await open_store())
        app.state.services = services
    logger.info("Serving with %s store", services.store.backend)

    bg_task = asyncio.create_task(background_loop(services))

    yield

    bg_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await bg_task
    if owned:
        await services.store.close()
        await close_db()
        app.state.services = None
        logger.info("Store closed")


app = FastAPI(
    title="HomeEasy",
    description="Local services marketplace: post tasks, bid, chat, review and pay",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.include_router(api_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return render_response(request, {"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return render_response(
        request,
        {"error": exc.detail},
        status_code=exc.status_code,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.debug("Rejected request to %s: %s", request.url.path, exc.errors())
    return render_response(request, {"error": "Invalid request"}, status_code=400)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return render_response(
        request, {"error": f"Rate limit exceeded: {exc.detail}"}, status_code=429
    )


@app.get("/health")
async def health(request: Request):
    services: AppState = request.app.state.services
    return {
        "status": "ok",
        "store": services.store.backend,
        "online_users": services.presence.online_count(),
        "uptime_seconds": round(services.uptime_seconds),
    }


def main():
    import uvicorn

    uvicorn.run(
        "homeeasy.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
