"""
Backup module for s3backup.

This module handles the core backup functionality including:
- Result logging
- Compression
- Storage (S3-compatible object stores)
- Retention policy enforcement
- Email notification
- Execution orchestration
"""

from .executor import BackupOrchestrator, RunOutcome, run_backup
from .compression import create_archive
from .storage import S3Storage, RemoteBackupObject
from .retention import RetentionPolicy, select_for_deletion
from .results import ResultLog, ResultMessage
from .notifier import Notifier

__all__ = [
    'BackupOrchestrator',
    'RunOutcome',
    'run_backup',
    'create_archive',
    'S3Storage',
    'RemoteBackupObject',
    'RetentionPolicy',
    'select_for_deletion',
    'ResultLog',
    'ResultMessage',
    'Notifier'
]
