"""
CaseFlow - FastAPI Application

Main entry point for the fraud case lifecycle backend.

Lifecycle:
report_submitted -> information_verified -> crpc_generated -> emails_sent ->
authorized -> assigned_to_police -> under_investigation -> evidence_collected ->
resolved -> closed  (report_submitted <-> rejected side loop)
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routers import auth_router, cases_router, admin_router, police_router, scammers_router
from .database import init_db
from .logging_config import init_logging
from .services.lifecycle.errors import CaseFlowError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize logging and database on startup."""
    init_logging()
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="CaseFlow",
    description="""
    CaseFlow - Fraud Case Lifecycle Engine

    Ingests fraud complaints and drives each case through verification,
    Section 91 CrPC document generation, authority notification, police
    investigation and closure.

    ## Key Principles
    - The timeline is append-only; case status is derived from it
    - A stage is completed at most once per case revision
    - Reported suspects are deduplicated on any shared identifier
    - Notification failures are recorded per authority, never hidden
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(cases_router)
app.include_router(admin_router)
app.include_router(police_router)
app.include_router(scammers_router)


@app.exception_handler(CaseFlowError)
async def caseflow_error_handler(request: Request, exc: CaseFlowError):
    """Map lifecycle errors to their HTTP status."""
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc}")
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_dict()})


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "CaseFlow",
        "version": "1.0.0",
        "description": "Fraud Case Lifecycle Engine",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m caseflow.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
