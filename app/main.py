"""POS Back Office returns service: FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.database import engine, Base
from app.api import returns
from app.services.notification import (
    NotificationChannel,
    NotificationEvent,
    create_webhook_handler,
    notification_service,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

if settings.notification_webhook_url:
    notification_service.register_handler(
        NotificationChannel.WEBHOOK,
        create_webhook_handler(settings.notification_webhook_url),
    )
    for event in NotificationEvent:
        notification_service.subscribe(event, [NotificationChannel.LOG, NotificationChannel.WEBHOOK])


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup (use migrations in production)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await notification_service.drain()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Retail POS back office: product returns, eligibility, "
                "refund calculation and the return approval lifecycle",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(returns.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.app_name, "version": "1.0.0"}
