from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from salescredit.api.routes import admin, claims
from salescredit.core.config import settings
from salescredit.core.errors import CreditServiceError, PersistenceError
from salescredit.db import init_models
import logging
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%d-%m-%Y %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_tables_on_startup:
        await init_models()
    yield


app = FastAPI(
    title="Sales Assistance Credits",
    description="Turns member claims of sales assistance into reviewed store-credit awards",
    version="v1.0",
    lifespan=lifespan,
    )
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8081"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.limiter = claims.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(CreditServiceError)
async def credit_service_error_handler(request: Request, exc: CreditServiceError):
    if isinstance(exc, PersistenceError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message},
    )


app.include_router(claims.router)
app.include_router(admin.router)

@app.get("/")
def check():
    return {"message": "Application is up"}
