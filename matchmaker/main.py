"""
Main FastAPI application for the match proposal and scheduling engine.
"""

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from matchmaker.api import routes
from matchmaker.core.logging_config import setup_logging

setup_logging()

app = FastAPI(
    title="Matchmaker Scheduling API",
    description="API for proposing, confirming and recording team fixtures",
    version="1.0.0"
)

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(routes.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Matchmaker Scheduling API",
        "version": "1.0.0",
        "endpoints": {
            "generate": "/api/proposals/generate",
            "proposals": "/api/proposals",
            "standings": "/api/standings/{sport}",
            "health": "/api/health"
        }
    }
