"""
File: condonotify/main.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Application entry point.
Responsible only for:
- Logging setup
- FastAPI app creation
- CORS (browser portals call the API directly)
- Router registration

Design principles:
- No business logic in this file
- No database access
- No outbound message creation
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from condonotify.admin.routes import router as admin_router
from condonotify.config import get_settings
from condonotify.health import router as health_router
from condonotify.notifications import router as notifications_router

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="NotificaCondo WhatsApp Dispatcher")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# -------------------------------------------------------------------
# Notification dispatch (single + scheduled batch)
# -------------------------------------------------------------------
app.include_router(notifications_router)

# -------------------------------------------------------------------
# Super admin visibility + controls
# -------------------------------------------------------------------
app.include_router(admin_router)

# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------
app.include_router(health_router)
