"""
Agency Portal - FastAPI Application

Back-office service for childminder agency enforcement.

Lifecycle:
- Risk assessment → suspension (Regulation 6) or warning notice
- Suspension review → extension (Regulation 7(3)) or lifting (Regulation 8)
- Notice of intention to cancel → representations → decision (Regulation 4)
- Regulator notifications (Local Authority, HMRC, DWP, Ofsted)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .routers import auth_router, providers_router, enforcement_router, scheduler_router
from .database import init_db

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Agency Portal - Enforcement",
    description="""
    Enforcement case management for a childminder agency.

    ## Workflows
    1. **Suspension / Warning**: risk assessment → legal confirmations or warning details → notice
    2. **Cancellation**: grounds → statutory timeline → notice of intention
    3. **Review**: extend or lift an in-effect suspension
    4. **Decision**: cancel registration or withdraw the notice

    Every workflow offers step validation, a notice preview and a single-transaction commit.
    """,
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(providers_router)
app.include_router(enforcement_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Agency Portal - Enforcement",
        "version": VERSION,
        "docs": "/docs",
        "case_types": ["suspension", "warning", "cancellation"],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


# For running with: python -m agency_portal.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
