import uvicorn
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from billbook.core.errors import BillbookError
from billbook.core.observability import (
    billbook_exception_handler,
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    storage_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from billbook.core.config import settings
from billbook.db.session import engine
from billbook.routers import billing, stock

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Billing backend for small businesses.\n\n"
        "Sale and purchase bills are numbered per business and type, and every "
        "bill keeps product stock in step when it is created, edited or deleted."
    ),
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "billing", "description": "Sale/purchase bills, listing and bill-number preview."},
        {"name": "stock", "description": "Stock levels, stock movements and stock rebuild."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(BillbookError, billbook_exception_handler)
app.add_exception_handler(SQLAlchemyError, storage_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local web development uses dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing.router)
app.include_router(stock.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return {"ok": False}
    return {"ok": True}


def run() -> None:
    uvicorn.run("billbook.main:app", host=settings.api_host, port=settings.api_port)
