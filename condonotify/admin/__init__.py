"""
File: condonotify/admin/__init__.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Super admin endpoints (delivery audit, job logs, pause switch, gateway test).
"""
