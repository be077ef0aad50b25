import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware

from .database import init_db
from .routers import admin_songs, generation, songs, verse_illustrations
from .services.scheduler import start_scheduler, stop_scheduler
from .settings.config import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from . import models  # Required for SQLAlchemy model detection
    await init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Illusongs", lifespan=lifespan)

# Illustration files written by the local storage backend
_illustrations_root = Path(settings.ILLUSTRATIONS_ROOT)
_illustrations_root.mkdir(parents=True, exist_ok=True)
app.mount(settings.ILLUSTRATIONS_PUBLIC_BASE, StaticFiles(directory=_illustrations_root), name="illustrations")

# Enable CORS if needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(songs.router)
app.include_router(admin_songs.router)
app.include_router(generation.router)
app.include_router(verse_illustrations.router)


@app.get("/healthz")
async def healthz():
    return {"ok": True}
