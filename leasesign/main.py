# leasesign/main.py

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leasesign.core import celery_app  # noqa: F401  binds shared tasks to the configured broker
from leasesign.core.config import settings
from leasesign.utils.logger import setup_app_logging, get_logger
# Local application imports - Routes
from leasesign.esign.router import router as esign_routes
from leasesign.leases.router import router as lease_routes
from leasesign.signing.router import router as signing_routes

# Create the FastAPI app
leasesign_app = FastAPI(
    title=f"Lease Signing Service - {settings.environment}",
    description="Lease document signing: native signing links and Docusign",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure logging
setup_app_logging(
    leasesign_app,
    log_level=settings.log_level,
    use_json=settings.environment.lower() == "production",
    log_file=settings.log_file,
    environment=settings.environment,
)
logger = get_logger(__name__)

# Add CORS middleware
leasesign_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_cors_urls.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
leasesign_app.include_router(signing_routes)
leasesign_app.include_router(lease_routes)
leasesign_app.include_router(esign_routes)


# Root API to check if the server is up
@leasesign_app.get("/", tags=["Base"])
async def health_check():
    """
    Root API to check if the server is up
    """
    logger.info("Calling root API for testing")
    return {"status": "ok"}
