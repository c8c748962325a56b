from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from splitledger.api.v1.routes.balances import router as balances_router
from splitledger.api.v1.routes.expense import router as expense_router
from splitledger.api.v1.routes.payments import router as payments_router
from splitledger.core.config import settings
from splitledger.core.exceptions import AppError
from splitledger.schemas.common import ErrorResponse

app = FastAPI(title=settings.PROJECT_NAME)


def _error(status_code: int, error: str, message: str, headers=None) -> JSONResponse:
    body = ErrorResponse(error=error, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def _describe(errors) -> str:
    parts = []
    for err in errors:
        # drop the "body" / "query" prefix
        loc = ".".join(str(p) for p in err.get("loc", ())[1:])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return _error(exc.status_code, type(exc).__name__, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error(400, "ValidationError", _describe(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error = HTTPStatus(exc.status_code).phrase.replace(" ", "")
    return _error(exc.status_code, error, str(exc.detail), headers=getattr(exc, "headers", None))


@app.get("/")
async def root():
    return {"message": f"{settings.PROJECT_NAME} is live"}

app.include_router(expense_router, prefix="/api/v1/expenses")
app.include_router(balances_router, prefix="/api/v1/balances")
app.include_router(payments_router, prefix="/api/v1/payments")
