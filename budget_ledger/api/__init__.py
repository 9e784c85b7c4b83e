"""
Budget Ledger API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import (
    BudgetLedgerError, ConflictError, InvalidStateError, NotFoundError, ValidationError
)
from ..config import get_config
from ..logging_config import get_logger, setup_logging
from .audit import router as audit_router
from .budgets import router as budgets_router
from .funds import router as funds_router
from .particulars import router as particulars_router
from .reports import router as reports_router
from .transactions import router as transactions_router


logger = get_logger("budget_ledger.api")

# Most specific classes first; handlers are looked up along the exception's MRO
ERROR_STATUS_CODES = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (BudgetLedgerError, 400),
)


def _error_handler(status_code: int):
    async def handler(request: Request, exc: BudgetLedgerError) -> JSONResponse:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())
    return handler


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Budget Ledger API",
        description="Barangay budget ledger: funds, transactions and COA reports",
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

    for error_class, status_code in ERROR_STATUS_CODES:
        app.add_exception_handler(error_class, _error_handler(status_code))

    # Include routers
    app.include_router(budgets_router, prefix="/budgets", tags=["Budgets"])
    app.include_router(funds_router, prefix="/funds", tags=["Funds"])
    app.include_router(particulars_router, prefix="/particulars", tags=["Particulars"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(reports_router, prefix="/reports", tags=["Reports"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "budget_ledger_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Budget Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "budgets": "/budgets",
                "funds": "/funds",
                "particulars": "/particulars",
                "transactions": "/transactions",
                "reports": "/reports",
                "audit": "/audit"
            }
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        "budget_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        workers=None if debug else config.api_workers,
        log_level=config.log_level.lower()
    )
