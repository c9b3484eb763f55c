import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

# Settings are read at import time, so .env has to be loaded first.
env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(dotenv_path=env_path, override=True)

from backend.cognitia import init_cognitia_module, router as cognitia_router, shutdown_cognitia_module  # noqa: E402
from backend.cognitia.database import engine  # noqa: E402
from backend.cognitia.routes import get_ai  # noqa: E402

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        logger.info("Initializing Cognitia module...")
        init_cognitia_module()
        logger.info("Cognitia module initialized.")
    except SQLAlchemyError as e:
        logger.error(f"Startup Cognitia module error: {e}")
    yield
    logger.info("Shutting down...")
    shutdown_cognitia_module()


app = FastAPI(title="Cognitia Classroom API", lifespan=lifespan)

origins = [
    "http://localhost:8000",
    "http://127.0.0.1:8000",
    "http://localhost:5173",
    "null",
]
extra_origins = os.getenv("COGNITIA_CORS_ORIGINS", "")
origins.extend(origin.strip() for origin in extra_origins.split(",") if origin.strip())

# Preview deployments get a fresh subdomain each time.
IS_PRODUCTION = os.getenv("RENDER") == "true" or "postgres" in os.getenv("COGNITIA_DATABASE_URL", "").lower()

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_origin_regex=r"https://.*\.(vercel\.app|onrender\.com)" if IS_PRODUCTION else None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cognitia_router)


@app.get("/api/health")
def health_check():
    """Health check endpoint to verify backend is running and configured correctly"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        db_status = f"error: {e}"

    return {
        "status": "healthy",
        "message": "Cognitia Backend is running",
        "environment": "production" if IS_PRODUCTION else "development",
        "database": db_status,
        "ai_enabled": get_ai().enabled,
    }


if __name__ == "__main__":
    import uvicorn

    # Set BACKEND_RELOAD=true explicitly if hot reload is needed.
    reload_enabled = os.getenv("BACKEND_RELOAD", "false").lower() == "true"
    backend_host = os.getenv("BACKEND_HOST", "127.0.0.1")
    backend_port = int(os.getenv("BACKEND_PORT", "8000"))
    try:
        uvicorn.run("backend.app:app", host=backend_host, port=backend_port, reload=reload_enabled)
    except OSError as e:
        if "address already in use" in str(e).lower():
            logger.error(f"Port {backend_port} is already in use. Stop the old process or set BACKEND_PORT to another port.")
        raise
