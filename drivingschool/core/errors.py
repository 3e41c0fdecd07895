"""Application-wide exception handlers."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from drivingschool.auth.oidc import OidcError
from drivingschool.services.payments import PaymentProcessorError

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'
CONFLICT_DETAIL = 'Request conflicts with existing data.'


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning('Integrity error in %s %s: %s', request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={'detail': CONFLICT_DETAIL})


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error('Database error in %s %s', request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={'detail': DATABASE_UNAVAILABLE_DETAIL})


async def oidc_error_handler(request: Request, exc: OidcError) -> JSONResponse:
    logger.error('Identity provider error in %s %s: %s', request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={'detail': str(exc)})


async def payment_error_handler(request: Request, exc: PaymentProcessorError) -> JSONResponse:
    logger.error('Payment processor error in %s %s: %s', request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={'detail': str(exc)})


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(OidcError, oidc_error_handler)
    app.add_exception_handler(PaymentProcessorError, payment_error_handler)
