import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api_keys import router as api_keys_router
from .billing import router as billing_router
from .bookings import router as bookings_router
from .business_hours import router as business_hours_router
from .core.config import get_settings
from .core.db import AsyncSessionLocal, engine
from .core.errors import BookingAppError
from .core.responses import ErrorCodes, error_response
from .rooms import router as rooms_router
from .seed import seed_demo_tenant
from .tenancy import init_schema
from .tenant_settings import router as settings_router
from .tenants import router as tenants_router


settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Boom Booking Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tenants_router)
app.include_router(rooms_router)
app.include_router(bookings_router)
app.include_router(business_hours_router)
app.include_router(settings_router)
app.include_router(api_keys_router)
app.include_router(billing_router)


# ────────────────────────────────────────────────────────────────
# Error Handlers
# ────────────────────────────────────────────────────────────────

@app.exception_handler(BookingAppError)
async def booking_app_error_handler(request: Request, exc: BookingAppError):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # ctx can hold the raised exception object itself
    errors = [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_response(
            ErrorCodes.VALIDATION_ERROR,
            "Invalid request",
            {"errors": jsonable_encoder(errors)},
        ),
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response(ErrorCodes.DATABASE_ERROR, "Database operation failed"),
    )


@app.on_event("startup")
async def on_startup():
    await init_schema(engine)
    if settings.seed_demo_tenant:
        async with AsyncSessionLocal() as session:
            tenant = await seed_demo_tenant(session)
            logger.info(f"Demo tenant ready: {tenant.subdomain} ({tenant.id})")


@app.get("/health")
async def healthcheck():
    return {"ok": True}
