import uvicorn
import os
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from dotenv import load_dotenv

# --- Load Environment Variables ---
# This must be done before any other modules are imported that need them.
load_dotenv()

from callsight.api import router as api_router
from callsight.config import settings, REQUIRED_AT_STARTUP
from callsight.database import create_db_and_tables, dispose_engines
from callsight.services.pipeline import get_pipeline, close_pipeline

# --- Logging Configuration ---
logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
# paramiko logs every channel event at INFO
logging.getLogger("paramiko").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logger.info("=" * 80)
    logger.info("🚀 [STARTUP] Application startup beginning...")
    settings.require(*REQUIRED_AT_STARTUP)
    logger.info(f"🔍 [STARTUP] SFTP host: {settings.SFTP_HOST}:{settings.SFTP_PORT}")
    logger.info(f"🔍 [STARTUP] Direct URL strategy: {'enabled' if settings.PUBLIC_BASE_URL else 'disabled'}")
    logger.info("=" * 80)

    logger.info("Initializing database and tables...")
    await create_db_and_tables()
    logger.info("✅ Database and tables are ready.")

    get_pipeline()
    logger.info("✅ [STARTUP] Application startup complete - ready to accept requests!")
    yield
    # --- Shutdown ---
    logger.info("Application shutdown...")
    await close_pipeline()
    await dispose_engines()

# Create FastAPI app instance
app = FastAPI(
    title="Callsight API",
    description="Batch transcription and categorisation of call-center recordings.",
    version="0.1.0",
    lifespan=lifespan
)

# --- CORS Middleware ---
# You can override allowed origins via env var ALLOWED_ORIGINS (comma-separated).
default_origins = "http://localhost:3000,http://127.0.0.1:3000"
raw_origins = os.environ.get("ALLOWED_ORIGINS", default_origins).split(",")
allow_origins = [o.strip() for o in raw_origins if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

# --- Include API Router ---
app.include_router(api_router, prefix="/api")

# --- Root Endpoint ---
@app.get("/", tags=["Root"])
async def read_root():
    return {"message": "Welcome to the Callsight API!", "status": "healthy"}

# --- Run the app ---
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    logger.info(f"🚀 Starting server on port {port}")
    uvicorn.run("main:app", host="0.0.0.0", port=port)
