# moda/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from .config import settings
from .database import init_db
from .logging_config import setup_logging
from .services.metadata_store import SqlMetadataStore
from .services.stores import create_remote_store
from .services.upload_queue import UploadQueueManager
from .services.version_reconciler import VersionReconciler
from .utils.file_handlers import clear_staging_area
from .websocket.manager import connection_manager
import logging
import os

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, storage and the upload queue"""
    # Setup logging first (creates log files)
    logger = setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # Staged files from a previous run belong to uploads that are gone
    clear_staging_area()
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    logger.info(f"Upload directory: {settings.UPLOAD_DIR}")

    init_db()
    logger.info("Database initialized successfully")

    remote_store = create_remote_store()
    if not remote_store.is_available():
        logger.warning(f"Remote store '{settings.STORAGE_BACKEND}' is not configured; uploads will fail")

    queue = UploadQueueManager(
        remote_store=remote_store,
        reconciler=VersionReconciler(SqlMetadataStore()),
    )
    queue.subscribe(connection_manager.on_queue_change)
    app.state.remote_store = remote_store
    app.state.upload_queue = queue

    yield

    logging.getLogger(__name__).info(f"Shutting down {settings.APP_NAME}...")
    await queue.close()
    if hasattr(remote_store, "close"):
        await remote_store.close()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    ## MODA Drawings Service

    Background upload queue and version control for project drawings.

    ### Features:
    * **Upload Queue**: Files upload one at a time in the background, in the order queued
    * **Live Progress**: Queue snapshots over REST and WebSocket
    * **Version Control**: Re-uploading a drawing adds version 2.0, 3.0, ...
    * **Folder Structure**: Project / Category / Discipline [/ Module] folders in SharePoint
    * **Module Packages**: Per-module folders with version-stamped file names

    ### Workflow:
    1. Initialize the project folder tree
    2. Queue drawing uploads for a discipline folder
    3. Watch progress on `/ws/uploads`
    4. Browse drawings, versions and download links
    """,
    debug=settings.DEBUG,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "uploads",
            "description": "Upload queue - Queue files, watch progress, cancel pending uploads"
        },
        {
            "name": "drawings",
            "description": "Drawings - Version history, download links, deletion"
        },
        {
            "name": "folders",
            "description": "Folders - Category/discipline/module folder tree per project"
        },
        {
            "name": "system",
            "description": "System endpoints - Health checks and API information"
        }
    ]
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health check endpoint
@app.get("/health", tags=["system"])
async def health_check():
    """
    System Health Check

    Returns the current system status, version and remote store availability.
    """
    remote_store = getattr(app.state, "remote_store", None)
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "storage_backend": settings.STORAGE_BACKEND,
        "storage_available": bool(remote_store and remote_store.is_available()),
    }

# Root endpoint
@app.get("/", tags=["system"])
async def root():
    """
    API Root Information
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health"
    }

# Include API routers
from .api import uploads, drawings, folders, websocket

app.include_router(uploads.router, prefix="/api", tags=["uploads"])
app.include_router(drawings.router, prefix="/api", tags=["drawings"])
app.include_router(folders.router, prefix="/api", tags=["folders"])
app.include_router(websocket.router, prefix="/ws")
