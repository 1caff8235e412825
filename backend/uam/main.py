from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from pydantic import BaseModel
from sqlalchemy.orm import Session
from sqlalchemy import text, inspect
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
import logging

from uam.core.database import get_db, engine, Base
from uam.core.errors import UamError
from uam.core.logging_config import configure_logging
from uam.deps.auth import require_role
from uam.metrics import init_metrics_zero
from uam.services.notify import set_notify_webhook, get_notify_webhook
from uam.api import access_log, admission, requests as request_routes, tasks
import uam.models  # noqa: F401  registers every table on Base

logger = logging.getLogger("uam.main")

app = FastAPI(
    title="UAM Approvals API",
    description="Access request admission, two-level approval and task closure",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

app.include_router(admission.router)
app.include_router(request_routes.router)
app.include_router(tasks.router)
app.include_router(access_log.router)

@app.on_event("startup")
def on_startup():
    configure_logging()
    init_metrics_zero()
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.error("could not create tables: %s", e)
        return
    logger.info("tables ready on %s: %s", engine.name, inspect(engine).get_table_names())

@app.exception_handler(UamError)
async def uam_error_handler(request: Request, exc: UamError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"code": "VALIDATION_ERROR", "message": "Invalid request body", "details": {"errors": errors}},
    )

@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "database": "connected",
            "tables": inspect(engine).get_table_names(),
            "timestamp": datetime.now()
        }
    except SQLAlchemyError as e:
        logger.warning("health check failed: %s", e)
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "timestamp": datetime.now()
        }

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

class NotifyWebhookIn(BaseModel):
    webhook_url: str

@app.post("/config/notify-webhook", response_model=dict)
def api_set_notify_webhook(body: NotifyWebhookIn, user=Depends(require_role("admin"))):
    url = body.webhook_url.strip()
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="Invalid notification relay URL")
    set_notify_webhook(url)
    return {"saved": True}

@app.get("/config/notify-webhook", response_model=dict)
def api_get_notify_webhook(user=Depends(require_role("admin"))):
    val = get_notify_webhook()
    masked = (val[:20] + "…") if val else None
    return {"configured": bool(val), "webhook_url_preview": masked}
