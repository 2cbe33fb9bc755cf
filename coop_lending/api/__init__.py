"""
Cooperative Lending API Application Factory
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging
from ..scheduler import DelinquencySweeper
from .deps import get_lending_service
from .installments import router as installments_router
from .loans import router as loans_router
from .reports import router as reports_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Cooperative Lending API",
        description="Loan lifecycle, installment ledger and delinquency tracking for a savings-and-loan cooperative",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(installments_router, prefix="/installments", tags=["Installments"])
    app.include_router(reports_router, prefix="/reports", tags=["Reports"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "coop_lending_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Cooperative Lending API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "installments": "/installments",
                "reports": "/reports",
            }
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False, sweep: bool = True):
    """Run the FastAPI server, with the delinquency sweeper in the background"""
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)

    sweeper = DelinquencySweeper(get_lending_service()) if sweep else None
    if sweeper:
        sweeper.start()
    try:
        uvicorn.run(
            "coop_lending.api:app",
            host=host or config.api_host,
            port=port or config.api_port,
            reload=debug,
            log_level=config.log_level.lower()
        )
    finally:
        if sweeper:
            sweeper.stop()
