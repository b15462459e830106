"""FastAPI application entry point."""

from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from tubely.core.config import settings
from tubely.core.logging import setup_logging
from tubely.core.middleware import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    UploadSizeLimitMiddleware,
)
from tubely.modules.video.router import router as video_router

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Tubely Video API

Upload videos for existing records. Uploaded files are remuxed so playback can
start before the download completes, then stored under a content-addressed key.

### Authentication

All video endpoints require a JWT Bearer token.

```
Authorization: Bearer <access_token>
```
    """,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "videos",
            "description": "Video records and uploads",
        },
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(UploadSizeLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(video_router, prefix=settings.API_PREFIX)

if settings.STORAGE_BACKEND.lower() == "local":
    assets_root = Path(settings.ASSETS_ROOT)
    assets_root.mkdir(parents=True, exist_ok=True)
    app.mount("/assets", StaticFiles(directory=assets_root), name="assets")


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status
    """
    return {"status": "healthy"}
