"""
Cooperative Back Office API Application Factory
"""

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .accounts import router as accounts_router
from .dependencies import get_actor, get_back_office, unwrap
from .dormancy import router as dormancy_router
from .interest import router as interest_router
from .loans import router as loans_router
from ..access import ActorContext
from ..service import BackOffice


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Cooperative Back Office API",
        description="Savings, interest, loan and dormancy operations for a cooperative",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(interest_router, prefix="/interest", tags=["Interest"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(dormancy_router, prefix="/dormancy", tags=["Dormancy"])

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "coop_backoffice_api",
            "version": "1.0.0"
        }

    @app.get("/")
    def get_api_info():
        """Get API information"""
        return {
            "name": "Cooperative Back Office API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "interest": "/interest",
                "loans": "/loans",
                "dormancy": "/dormancy",
                "audit": "/audit/verify"
            }
        }

    @app.get("/audit/verify")
    def verify_audit_trail(
        actor: ActorContext = Depends(get_actor),
        office: BackOffice = Depends(get_back_office)
    ):
        """Verify the audit hash chain"""
        return unwrap(office.verify_audit_trail(actor))

    return app
