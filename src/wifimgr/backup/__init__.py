"""Serial-numbered backups and rollback of intent files."""
from .manager import (
    BackupInfo,
    BackupManager,
    BackupValidation,
    DEFAULT_MAX_BACKUPS,
    DEFAULT_RETENTION_DAYS,
)

__all__ = [
    "BackupInfo",
    "BackupManager",
    "BackupValidation",
    "DEFAULT_MAX_BACKUPS",
    "DEFAULT_RETENTION_DAYS",
]
