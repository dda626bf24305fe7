from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from commerce_channel.config import settings
from commerce_channel.database import get_db
from commerce_channel.logging_config import setup_logging
from commerce_channel.models import Conversation, Message
from commerce_channel.routers import dashboard, media, status, webhook

setup_logging(settings.log_level)

app = FastAPI(
    title="Commerce Channel API",
    description="WhatsApp commerce channel: inbound messages, agent replies and delivery tracking",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(dashboard.router)
app.include_router(status.router)
app.include_router(media.router)


@app.get("/health")
async def health():
    return {"success": True, "message": "Commerce channel is running"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
    }
