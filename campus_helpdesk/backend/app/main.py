# campus_helpdesk/backend/app/main.py
import logging

from fastapi import FastAPI

from .api.v1.tickets import router as tickets_router, ticket_service
from .config import LOG_LEVEL
from .db import SessionLocal
from .services.status_registry import seed_statuses

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Campus Helpdesk Ticket Engine")


# Seed statuses

@app.on_event("startup")
def seed_registry():
    db = SessionLocal()
    try:
        added = seed_statuses(db)
        if added:
            ticket_service.registry.invalidate()
    finally:
        db.close()


@app.get("/health")
def health_check():
    return {"status": "ok"}


app.include_router(tickets_router, prefix="/api/v1")
