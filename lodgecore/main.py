from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lodgecore import config
from lodgecore.database.conexion import Base, engine
from lodgecore import models  # registers every table on Base.metadata
from lodgecore.errors import (
    LodgeError,
    ValidationError,
    NotFoundError,
    InvalidTransition,
    InsufficientAvailability,
    NoRoomAvailable,
    OverpaymentError,
    PaymentProviderError,
    ReferenceGenerationError,
)
from lodgecore.endpoints import availability, bookings, reservations, payments
from lodgecore.providers.registry import ProviderRegistry, build_default_registry
from lodgecore.utils.logging_utils import log_event

ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (InsufficientAvailability, status.HTTP_409_CONFLICT),
    (NoRoomAvailable, status.HTTP_409_CONFLICT),
    (ReferenceGenerationError, status.HTTP_409_CONFLICT),
    (OverpaymentError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PaymentProviderError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(error: LodgeError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def _lifespan(app: FastAPI):
    try:
        Base.metadata.create_all(bind=engine)
        log_event("startup", "system", "Tables created (or already present)")
    except Exception as e:
        log_event("startup", "system", "Error creating tables", f"error={e}")
        raise
    yield


def create_app(providers: ProviderRegistry = None, create_tables: bool = True) -> FastAPI:
    app = FastAPI(title="Lodge Booking Engine", lifespan=_lifespan if create_tables else None)
    app.state.providers = providers or build_default_registry()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LodgeError)
    async def lodge_error_handler(request: Request, exc: LodgeError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    app.include_router(availability.router)
    app.include_router(bookings.router)
    app.include_router(reservations.router)
    app.include_router(payments.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
