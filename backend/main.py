from fastapi import FastAPI, Depends, HTTPException, status, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from auth import authenticate, create_access_token
from company_api import router as company_router
from config import settings
from database import init_db
from errors import ServiceError
from functions import router as functions_router
from platform_admin import router as platform_admin_router
from reports_api import router as reports_router
from schemas import HealthResponse, LoginRequest, Token
from table_gateway import TableGateway, get_gateway

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# Strip whitespace from each origin to prevent configuration errors
CORS_ORIGINS = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
    max_age=3600,
)


def _with_cors(request: Request, response):
    origin = request.headers.get('origin')
    if origin and origin in CORS_ORIGINS:
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Access-Control-Allow-Credentials'] = 'true'
    return response


# ==================== CUSTOM EXCEPTION HANDLERS ====================

@app.exception_handler(StarletteHTTPException)
async def custom_http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Ensures CORS headers are included in error responses raised from
    dependencies (auth, role checks), otherwise the browser hides them.
    """
    response = await http_exception_handler(request, exc)
    return _with_cors(request, response)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Domain errors carry their own status code and user-facing message"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    response = JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
    return _with_cors(request, response)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler for unexpected errors.
    Ensures CORS headers are present even on 500 errors.
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
    return _with_cors(request, response)

# ==================== END EXCEPTION HANDLERS ====================

app.include_router(company_router)
app.include_router(reports_router)
app.include_router(functions_router)
app.include_router(platform_admin_router)


@app.on_event("startup")
async def startup_event():
    """Initialize database and background jobs on startup"""
    logger.info("=" * 60)
    logger.info("Starting application initialization...")
    logger.info("=" * 60)

    try:
        await init_db()
        logger.info("Database initialization successful!")
    except ConnectionRefusedError as e:
        logger.error("=" * 60)
        logger.error("CRITICAL: Database connection refused!")
        logger.error(f"Error: {e}")
        logger.error("=" * 60)
        raise

    if settings.SCHEDULER_ENABLED:
        try:
            from subscription_scheduler import start_subscription_scheduler
            app.state.scheduler = start_subscription_scheduler()
            logger.info("✅ Subscription scheduler started successfully")
        except Exception as e:
            # Don't fail startup if scheduler fails
            logger.error(f"⚠️ Failed to start subscription scheduler: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("Subscription scheduler stopped")


@app.post("/auth/login", response_model=Token)
async def login(
    login_data: LoginRequest,
    gateway: TableGateway = Depends(get_gateway),
):
    """Exchange e-mail and password for a bearer token"""
    profile = await authenticate(gateway, login_data.email, login_data.password)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(profile["id"], profile["role"], profile["email"])
    logger.info(f"User {profile['email']} logged in as {profile['role']}")
    return Token(access_token=access_token, profile_id=profile["id"], role=profile["role"])


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Liveness check for load balancers and uptime monitors; does not touch the database"""
    return HealthResponse(status="healthy", app=settings.APP_NAME)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
