"""FastAPI application entry point"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.api import nudges
from app.utils.monitoring import nudge_run_metrics
from app.utils.scheduler import start_scheduler, shutdown_scheduler
from contextlib import asynccontextmanager

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan"""
    # Startup
    if settings.NUDGE_SCHEDULER_ENABLED:
        start_scheduler()
    yield
    # Shutdown
    shutdown_scheduler()


app = FastAPI(
    title="Nudge Notification API",
    description="Scheduled push notifications and response handling for patient check-in nudges",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(nudges.router, prefix="/api/nudges", tags=["nudges"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "Nudge Notification API",
        "metrics": nudge_run_metrics.get_metrics(),
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "Nudge Notification API", "version": "1.0.0"}
