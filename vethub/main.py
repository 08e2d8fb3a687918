import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from vethub.core.config import settings
from vethub.core.db import SessionLocal
from vethub.core.errors import AppError, Internal
from vethub.services.realtime import manager
from vethub.services.reminders import run_reminder_loop

from vethub.api.v1.auth import router as auth_router
from vethub.api.v1.users import router as users_router
from vethub.api.v1.animals import router as animals_router
from vethub.api.v1.appointments import router as appointments_router
from vethub.api.v1.chat import router as chat_router
from vethub.api.v1.notifications import router as notifications_router
from vethub.api.v1.ws_chat import router as ws_chat_router


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Arrancando %s", settings.APP_NAME)
    reminder_task = None
    if settings.REMINDERS_ENABLED:
        reminder_task = asyncio.create_task(run_reminder_loop(SessionLocal, manager))
    yield
    if reminder_task:
        reminder_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reminder_task
    logger.info("Apagando %s", settings.APP_NAME)


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

# 🔓 ajustá origins con tu URL de Vite
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validación fallida en %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content={"code": "invalid_input", "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(SQLAlchemyError)
async def db_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Error de base en %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=Internal().to_dict())


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(animals_router)
app.include_router(appointments_router)
app.include_router(chat_router)
app.include_router(notifications_router)
app.include_router(ws_chat_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
