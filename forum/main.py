import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from forum.config import settings
from forum.database import init_models
from forum.errors import DomainError, FieldValidationError
from forum.kv import kv
from forum.middleware import TimingMiddleware
from forum.routers import posts, users

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await kv.connect()
    if settings.DB_SYNCHRONIZE:
        await init_models()
    yield
    # Shutdown
    await kv.disconnect()

app = FastAPI(
    title="Forum API",
    description="Users, posts and votes",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    # Session cookies cross origins, so origins must stay explicit (never "*").
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(posts.router)
app.include_router(users.router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    else:
        logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    content = {"detail": exc.message}
    if isinstance(exc, FieldValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}


def run() -> None:
    """Serve the API with uvicorn; installed as the ``forum-api`` command."""
    uvicorn.run(
        "forum.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
