import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from adaptation.errors import PersistenceError, UnknownRuleSetVersionError

logger = logging.getLogger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("validation error on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # le contexte pydantic peut contenir des exceptions non sérialisables
    return [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]


async def unknown_rule_set_handler(request: Request, exc: UnknownRuleSetVersionError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("persistence failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "storage unavailable"})


def register_exception_handlers(app) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(UnknownRuleSetVersionError, unknown_rule_set_handler)
    app.add_exception_handler(PersistenceError, persistence_error_handler)
