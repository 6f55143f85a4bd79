"""Main FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import engine, Base, SessionLocal
from app.api.routes import router
from app.logging_config import setup_logging
from app.services.errors import LifecycleError
from app.services.sweeper import OverdueSweeper
# Import models to register them with SQLAlchemy Base
from app.models.domain import Ticket, TicketComment
from app.models.audit import TicketAuditEntry
from app.models.directory import AppUser, Project

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    sweeper = OverdueSweeper(SessionLocal)
    app.state.sweeper = sweeper
    if settings.sweeper_enabled:
        sweeper.start()

    logger.info("Ticket service started")
    yield

    sweeper.stop()
    logger.info("Ticket service stopped")


app = FastAPI(
    title="Support Ticket Lifecycle Service",
    description="Moves support requests from registration to closure with guarded transitions, "
                "business-day deadlines, automatic delay detection and an append-only audit trail.",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    """Refusals are expected outcomes; return them with their own status code."""
    logger.warning("%s %s refused: %s - %s", request.method, request.url.path, exc.error_code, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# Include API routes
app.include_router(router, prefix="/api", tags=["Tickets"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "ticket-lifecycle"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
