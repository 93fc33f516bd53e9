import logging

from starlette.requests import Request
from starlette.responses import JSONResponse

from walkthroughs.services.errors import (
    AlreadyExistsException,
    BackendError,
    InvalidRequest,
    NotFoundException,
    ProvisionError,
    StreamError,
    TemplateError,
    WalkthroughException,
)

ERROR_STATUS = {
    InvalidRequest: 400,
    NotFoundException: 404,
    AlreadyExistsException: 409,
    TemplateError: 422,
    ProvisionError: 502,
    StreamError: 502,
    BackendError: 502,
}

logger = logging.getLogger(__name__)


def _exception_handler(request: Request, exc: Exception):
    status = ERROR_STATUS.get(type(exc), 500)
    if status >= 500:
        logger.exception("Walkthrough operation failed for path=%s: %s", request.url.path, exc)
    else:
        logger.warning("Request rejected path=%s status=%s error=%s", request.url.path, status, exc)
    return JSONResponse({"detail": str(exc)}, status_code=status)


def register_exception_handlers(app):
    app.exception_handler(WalkthroughException)(_exception_handler)
