"""FastAPI application exposing pipeline status."""

import logging

from fastapi import FastAPI

from llmscrawl import __version__
from llmscrawl.routes import status

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="LLMs Crawl",
    description="Status of the scheduled crawl pipeline and its worker pool",
    version=__version__,
)

# Include routers
app.include_router(status.router)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "LLMs Crawl",
        "version": __version__,
        "status": "running",
    }
