"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.config import settings, split_csv
from app.schemas.upload import HealthResponse
from app.services.storage_root import storage_root

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Make sure the upload directory exists before serving requests."""
    root = storage_root.ensure_root()
    logger.info("Storing uploads in %s", root)
    logger.info("Server listening on port %d", settings.API_PORT)
    yield


app = FastAPI(
    title="Image Upload API",
    version="1.0.0",
    description="Accepts image uploads and returns a public URL for each stored file.",
    lifespan=lifespan,
)

# CORS
origins = split_csv(settings.CORS_ORIGINS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Report whether the upload directory is usable."""
    upload = storage_root.describe()
    status = "ok" if upload["exists"] and upload["writable"] else "degraded"
    return {"status": status, "upload": upload}


# Register routers
from app.routes.uploads import router as uploads_router
app.include_router(uploads_router)

# Stored files are served back read-only under /uploads/<generated name>
app.mount(
    "/uploads",
    StaticFiles(directory=str(storage_root.path), check_dir=False),
    name="uploads",
)

# Front-end last, so it never shadows the API routes
if Path(settings.STATIC_DIR).is_dir():
    app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.API_PORT)
