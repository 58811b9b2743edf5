# main.py
import asyncio
import logging

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from deliverycast.core.config import BROADCAST_TICK_S, LOG_LEVEL
from deliverycast.core.logging import configure_logging
from deliverycast.routers import admin, auth, delivery, driver, ws

configure_logging(LOG_LEVEL)
logger = logging.getLogger("deliverycast.sandbox")


# -----------------------------
# App + CORS
# -----------------------------
app = FastAPI(
    title="deliverycast sandbox",
    description="Local stand-in for the delivery backend: broadcasts, accept, realtime push",
)

# Allow http://localhost:anyport and http://127.0.0.1:anyport
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(delivery.router)
app.include_router(driver.router)
app.include_router(admin.router)
app.include_router(ws.router)


# -----------------------------
# Errors: {success: false, error}
# -----------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error(request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"success": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())})


# -----------------------------
# Background: broadcast expiry
# -----------------------------
async def expiry_loop():
    while True:
        try:
            await delivery.sweep_expired_broadcasts()
        except Exception:
            logger.exception("[SANDBOX] Expiry sweep failed")
        await asyncio.sleep(BROADCAST_TICK_S)


@app.on_event("startup")
async def startup():
    app.state.expiry_task = asyncio.create_task(expiry_loop())


@app.on_event("shutdown")
async def shutdown():
    task = getattr(app.state, "expiry_task", None)
    if task:
        task.cancel()


# -----------------------------
# Basics
# -----------------------------
@app.get("/")
async def root():
    return {"message": "API is running. Go to /docs"}


@app.get("/health")
async def health():
    return {"ok": True}
