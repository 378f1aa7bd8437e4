"""
NotificaCondo WhatsApp notification dispatcher.
"""
