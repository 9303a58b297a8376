import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

import config
import database
from auth import router as auth_router
from cart import router as cart_router
from catalog import router as catalog_router
from catalog import seed_catalog
from errors import register_error_handlers
from notifications import build_notifier
from orders import router as orders_router
from payments import build_payment_gateway
from payments import router as payment_router
from users import router as user_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.payment_gateway = build_payment_gateway()
    app.state.notifier = build_notifier()
    if database.db is None:
        logger.warning("DATABASE_URL not set. Database endpoints will answer 503.")
    else:
        database.ensure_indexes(database.db)
        if config.SEED_DEMO_DATA:
            seed_catalog(database.db)
    yield


app = FastAPI(title="Electronics Hub API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(auth_router)
app.include_router(user_router)
app.include_router(catalog_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(payment_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed)
    return response


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {
        "success": True,
        "message": "Electronics Hub API is running",
        "version": app.version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health")
def health():
    return {
        "success": True,
        "message": "Server is healthy",
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "database": "configured" if database.db is not None else "not configured",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
