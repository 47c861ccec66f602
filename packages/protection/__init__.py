"""Backups and background integrity monitoring."""

from packages.protection.backups import BackupRecord, BackupRing
from packages.protection.monitor import IntegrityMonitor
from packages.protection.service import (
    DataProtection,
    close_data_protection,
    get_data_protection,
)

__all__ = [
    "BackupRecord",
    "BackupRing",
    "DataProtection",
    "IntegrityMonitor",
    "close_data_protection",
    "get_data_protection",
]
