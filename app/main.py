"""
S-Hub API - manufacturing quoting portal for customers, suppliers and S-Hub staff.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.db.session import init_db
from app.db.storage import NumberGenerationError
from app.services.message_reminders import UnreadMessageReminder

from app.api import (
    auth,
    profile,
    rfqs,
    quotes,
    orders,
    shipments,
    dashboard,
    files,
    admin,
    admin_rfqs,
    companies,
    purchase_orders,
    audit,
    suppliers,
    messages,
    notifications,
)

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    reminder = None
    if settings.MESSAGE_REMINDER_ENABLED:
        reminder = UnreadMessageReminder()
        reminder.start()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")
    yield
    if reminder is not None:
        await reminder.stop()


app = FastAPI(title="S-Hub API", version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============= ERROR HANDLERS =============

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", []) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"message": "Validation failed", "errors": errors})


@app.exception_handler(NumberGenerationError)
async def number_generation_handler(request: Request, exc: NumberGenerationError):
    logger.error(f"Number generation failed on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"message": str(exc)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# ============= ROUTERS =============

app.include_router(auth.router)
app.include_router(profile.router)
app.include_router(rfqs.router)
app.include_router(quotes.router)
app.include_router(orders.router)
app.include_router(shipments.router)
app.include_router(dashboard.router)
app.include_router(files.router)
app.include_router(admin.router)
app.include_router(admin_rfqs.router)
app.include_router(companies.router)
app.include_router(purchase_orders.router)
app.include_router(audit.router)
app.include_router(suppliers.router)
app.include_router(messages.router)
app.include_router(notifications.router)


@app.get("/api/health", tags=["System"])
async def health():
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
