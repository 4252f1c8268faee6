# main.py
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

import uvicorn
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.environments import current_config, validate_config
from database.db import close_db, init_db
from router import auth, broadcasts, conversations, cron, twilio, whatsapp
from utils.cache import kv_store
from utils.health_check import health_check
from utils.logger import get_logger
from utils.metrics import metrics
from utils.timeutils import isoformat, utcnow
from workers import worker_manager

log = get_logger("main")


# -------------------------
# FastAPI app
# -------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown"""
    log.info("Application starting", environment=current_config.ENVIRONMENT.value)

    validate_config(current_config)
    await init_db()
    log.info("Database initialized")

    if current_config.ENABLE_FOLLOWUP_WORKER:
        try:
            await worker_manager.start_all_workers()
        except Exception as e:
            log.error("Workers failed to start", error=str(e), exc_info=True)

    log.info("Application ready")

    yield

    log.info("Application shutting down")
    await worker_manager.stop_all_workers()
    await close_db()
    await kv_store.close()
    log.info("Application shutdown complete")


app = FastAPI(title="Loomi WhatsApp Sales Agent", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(whatsapp.router)
app.include_router(twilio.router)
app.include_router(conversations.router)
app.include_router(broadcasts.router)
app.include_router(cron.router)


# -------------------------
# Operations
# -------------------------
@app.get("/health")
async def health_endpoint():
    """
    Health check endpoint
    Returns 200 if healthy, 503 otherwise
    """
    result = await health_check.check_all()
    status_code = 200 if result["overall_status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)


@app.get("/health/quick")
async def health_quick():
    """Quick health check - just returns 200"""
    return {"status": "ok", "timestamp": isoformat(utcnow())}


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=metrics.get_metrics(), media_type=metrics.get_content_type())


@app.get("/workers/status")
async def workers_status():
    """Get status of all background workers"""
    return {"workers": worker_manager.get_all_status(), "timestamp": isoformat(utcnow())}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=current_config.DEBUG)
