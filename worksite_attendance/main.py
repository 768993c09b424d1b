from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from starlette.exceptions import HTTPException as StarletteHTTPException

from worksite_attendance.api.routes import alerts, attendance, auth, checkin, face, health, webauthn
from worksite_attendance.core.config import get_settings
from worksite_attendance.core.exceptions import CheckinError
from worksite_attendance.core.logger import configure_logging
from worksite_attendance.core.security import hash_password, safe_decode_token
from worksite_attendance.db.base import Base
from worksite_attendance.db.models import User
from worksite_attendance.db.session import SessionLocal, engine
from worksite_attendance.ws.manager import ws_manager

settings = get_settings()
configure_logging(settings.log_level, json_logs=settings.log_json)
logger = logging.getLogger("worksite.backend")


def bootstrap_defaults() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        admin = db.scalar(select(User).where(User.username == settings.bootstrap_admin_username))
        if admin is None:
            admin = User(
                username=settings.bootstrap_admin_username,
                password_hash=hash_password(settings.bootstrap_admin_password),
                role=settings.bootstrap_admin_role,
                is_active=True,
            )
            db.add(admin)
            db.commit()
            logger.info("Created bootstrap admin user '%s'.", settings.bootstrap_admin_username)


@asynccontextmanager
async def lifespan(app: FastAPI):
    bootstrap_defaults()
    yield


app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix)
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(checkin.router, prefix=settings.api_prefix)
app.include_router(webauthn.router, prefix=settings.api_prefix)
app.include_router(face.router, prefix=settings.api_prefix)
app.include_router(attendance.router, prefix=settings.api_prefix)
app.include_router(alerts.router, prefix=settings.api_prefix)


@app.exception_handler(CheckinError)
async def checkin_error_handler(request: Request, exc: CheckinError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = "Invalid request"
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        detail = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
        message = f"{message}: {detail}"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.websocket("/ws/alerts")
async def alerts_socket(websocket: WebSocket):
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return

    payload = safe_decode_token(token)
    if payload is None:
        await websocket.close(code=4401)
        return
    if payload.get("role") not in ("admin", "supervisor"):
        await websocket.close(code=4403)
        return

    await ws_manager.connect(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            if message.lower() == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception:
        await ws_manager.disconnect(websocket)
        await asyncio.sleep(0)
