"""
Asset Notification Mailer

This module queues and delivers email notifications for inventory-tracking
records (master loans, infusion pumps, cleaning supplies) and keeps the
device registry in sync with the periodic Excel export.
"""

__version__ = "1.0.0"
