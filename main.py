import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from drivetheory.core.config import settings
from drivetheory.core.database import engine, Base, SessionLocal, get_db
from drivetheory.core.exceptions import ServiceError
from drivetheory.api.v1 import api_router
from drivetheory.features.user.model import User
from drivetheory.features.question.model import Question
from drivetheory.features.exam.model import Exam
from drivetheory.features.simulation.model import ExamSimulation, ExamSimulationLog
from drivetheory.features.payment.model import Payment
from drivetheory.features.audit.model import AdminAuditLog
from drivetheory.features.user.service import UserService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_default_admin():
    db = SessionLocal()
    try:
        UserService.ensure_default_admin(db, settings.DEFAULT_ADMIN_USERNAME, settings.DEFAULT_ADMIN_PASSWORD)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    Base.metadata.create_all(bind=engine)
    create_default_admin()
    yield
    logger.info("Shutting down %s", settings.PROJECT_NAME)


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Timed driving-theory practice exams with paid access packages",
    version="1.0.0",
    docs_url=None if settings.is_production() else "/docs",
    redoc_url=None if settings.is_production() else "/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    logger.info(
        "%s %s -> %s %s: %s %s",
        request.method, request.url.path, exc.status_code, exc.code, exc.message, exc.context,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "The request conflicts with existing data", "code": "conflict"},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    message = "An internal error occurred" if settings.is_production() else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": message, "code": "internal_error"},
    )


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check could not reach the database: %s", e)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unreachable", "environment": settings.ENVIRONMENT},
        )
    return {"status": "healthy", "database": "ok", "environment": settings.ENVIRONMENT}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=not settings.is_production())
