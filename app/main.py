import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.db import dynamo
from app.routers import auth, budget, expenses, funds, health

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DYNAMO_CREATE_TABLES:
        logger.info("Ensuring DynamoDB tables exist...")
        created = dynamo.ensure_tables()
        if created:
            logger.info(f"Created tables: {', '.join(created)}")
    logger.info(f"{settings.PROJECT_NAME} API started")
    yield
    logger.info(f"{settings.PROJECT_NAME} API stopped")


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for e in exc.errors():
        loc = [str(part) for part in e.get("loc", ()) if part != "body"]
        errors.append({
            "path": ".".join(loc),
            "message": e.get("msg", "Invalid value"),
            "type": e.get("type"),
        })
    first = errors[0] if errors else None
    detail = f"{first['path']}: {first['message']}" if first and first["path"] else "invalid request format"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": detail, "errors": errors},
    )


@app.exception_handler(dynamo.DynamoConflict)
async def dynamo_conflict_handler(request: Request, exc: dynamo.DynamoConflict):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": exc.message},
    )


@app.exception_handler(dynamo.DynamoError)
async def dynamo_error_handler(request: Request, exc: dynamo.DynamoError):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"storage error: {exc.message}"},
    )


# Root endpoint
@app.get("/")
def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}


# Register routers
app.include_router(health.router, prefix=f"{settings.API_PREFIX}", tags=["Health"])  # /api/health
app.include_router(auth.router, prefix=f"{settings.API_PREFIX}/auth", tags=["Auth"])
app.include_router(budget.router, prefix=f"{settings.API_PREFIX}/budget", tags=["Budget"])
app.include_router(expenses.router, prefix=f"{settings.API_PREFIX}/expenses", tags=["Expenses"])
app.include_router(funds.router, prefix=f"{settings.API_PREFIX}/funds", tags=["Funds"])
