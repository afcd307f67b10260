import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.container import build_services
from app.database import SessionLocal, init_db
from app.routers import event_types, notifications, otp, templates

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="OTP & Notification Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(otp.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
app.include_router(event_types.router, prefix="/api")
app.include_router(templates.router, prefix="/api")


@app.on_event("startup")
def startup() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    init_db()
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings, SessionLocal)
    if settings.start_queue_worker:
        app.state.services.worker.start()


@app.on_event("shutdown")
def shutdown() -> None:
    services = getattr(app.state, "services", None)
    if services is not None:
        services.worker.stop()


@app.get("/")
def root():
    return {"status": "Notification service running"}
