from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(ValueError):
    status_code = status.HTTP_400_BAD_REQUEST


class ValidationError(DomainError):
    pass


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: object) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f'{resource} not found: {identifier}')


class ConflictError(DomainError):
    status_code = status.HTTP_409_CONFLICT


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        logger.info(
            'Domain error',
            extra={'path': request.url.path, 'error': type(exc).__name__, 'detail': str(exc)},
        )
        return JSONResponse(status_code=exc.status_code, content={'error': str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {'field': '.'.join(str(part) for part in err.get('loc', ()) if part != 'body'), 'message': err.get('msg')}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={'error': 'Validation failed', 'details': details},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception('Unhandled error', extra={'path': request.url.path})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={'error': 'Internal server error'},
        )
