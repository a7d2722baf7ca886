"""
Backup orchestrator - runs the complete backup workflow.

Workflow:
1. Validate settings
2. Ensure the destination bucket exists
3. List existing backups and prune beyond the retention count
4. Create the archive in the temporary directory
5. Upload it
6. Remove the local archive
7. Email the results (if configured)

Every step is recorded in a ResultLog. The orchestrator never exits the
process; run() returns a RunOutcome carrying the exit code.
"""

import os
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from s3backup.config import BackupSettings
from .compression import (
    ARCHIVE_FORMATS,
    create_archive,
    generate_archive_filename,
    strip_archive_extension,
    content_type_for,
    CompressionError
)
from .notifier import Notifier
from .results import ResultLog
from .retention import RetentionPolicy
from .storage import S3Storage, StorageError, RemoteBackupObject


logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class ValidationError(Exception):
    """Raised when a required setting is missing or invalid."""

    def __init__(self, message: str, kind: str = 'info'):
        super().__init__(message)
        self.kind = kind


class LocalIOError(Exception):
    """Raised when the local archive cannot be removed."""
    pass


@dataclass
class RunOutcome:
    """Result of one backup run."""

    exit_code: int
    log: ResultLog
    uploaded_key: Optional[str] = None
    pruned_keys: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == EXIT_SUCCESS


class _Fatal(Exception):
    """Internal signal: a fatal step already recorded its error."""

    def __init__(self, notify: bool = True):
        super().__init__()
        self.notify = notify


# Required settings and the flag that sets them
REQUIRED_SETTINGS = (
    ('endpoint', 'endpoint'),
    ('access_key_id', 'access-key-id'),
    ('secret_access_key', 'secret-access-key'),
    ('bucket_name', 'bucket-name'),
    ('backup_folder', 'backup-folder'),
)


def validate_settings(settings: BackupSettings):
    """
    Check required settings and the source directory.

    Raises:
        ValidationError: On the first missing setting, a missing folder or
            an unsupported archive format
    """
    for attr, flag in REQUIRED_SETTINGS:
        value = getattr(settings, attr) or ''
        if not value.strip():
            raise ValidationError(f"Please specify a {flag}: --{flag}=...")

    if not os.path.isdir(settings.backup_folder):
        raise ValidationError(f"The folder {settings.backup_folder} does not exist!", kind='error')

    if not os.access(settings.backup_folder, os.R_OK | os.X_OK):
        raise ValidationError(f"The folder {settings.backup_folder} is not readable!", kind='error')

    if settings.archive_format not in ARCHIVE_FORMATS:
        raise ValidationError(
            f"Unsupported archive format: {settings.archive_format}. "
            f"Use one of: {', '.join(ARCHIVE_FORMATS)}",
            kind='error'
        )


class BackupOrchestrator:
    """
    Runs one backup: validate, ensure bucket, prune, archive, upload,
    clean up, notify.
    """

    def __init__(self, settings: BackupSettings,
                 notifier: Optional[Notifier] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize backup orchestrator.

        Args:
            settings: Resolved settings for this run
            notifier: Notifier to use (default: built from settings)
            clock: Source of the current time (default: datetime.now)
        """
        self.settings = settings
        self.notifier = notifier or Notifier(settings)
        self.clock = clock or datetime.now
        self.log = ResultLog(clock=self.clock)
        self.storage = None
        self.archive_path = None
        self.uploaded_key = None
        self.pruned_keys = []

    def run(self) -> RunOutcome:
        """
        Execute the backup.

        Returns:
            RunOutcome with exit code 0 on success, 1 on any fatal step
        """
        try:
            self._execute_workflow()
        except _Fatal as fatal:
            if fatal.notify:
                self._notify()
            return self._outcome(EXIT_FAILURE)

        self._notify()
        return self._outcome(EXIT_SUCCESS)

    def _execute_workflow(self):
        """Execute the backup workflow steps in order."""
        # Step 1: Validate
        try:
            validate_settings(self.settings)
        except ValidationError as e:
            self.log.record(e.kind, str(e))
            raise _Fatal(notify=False)

        self.log.info(f"Starting backup for {self.settings.backup_folder}")

        # Step 2: Bucket
        self._ensure_bucket()

        # Step 3: List and prune
        objects = self._list_backups()
        self._prune(objects)

        # Step 4: Archive
        self._create_archive()

        # Step 5: Upload
        self._upload()

        # Step 6: Local cleanup
        self._remove_local_archive()

    def _ensure_bucket(self):
        s = self.settings

        try:
            self.storage = S3Storage(
                endpoint=s.endpoint,
                access_key=s.access_key_id,
                secret_key=s.secret_access_key,
                bucket_name=s.bucket_name,
                region=s.location,
                use_ssl=s.use_ssl
            )
            created = self.storage.ensure_bucket()
        except StorageError as e:
            self.log.error(str(e))
            raise _Fatal()

        if not created:
            self.log.info(f"We already own {s.bucket_name}")
        self.log.info(f"Using bucket: {s.bucket_name}")

    def _list_backups(self) -> List[RemoteBackupObject]:
        """List existing backups; unreadable entries are recorded and skipped."""
        objects = self.storage.list_objects(
            self.settings.backup_prefix,
            on_error=lambda e: self.log.error(str(e))
        )
        logger.debug(f"Found {len(objects)} existing backups with prefix {self.settings.backup_prefix!r}")
        return objects

    def _prune(self, objects: List[RemoteBackupObject]):
        """Delete backups beyond the retention count. Failures never abort."""
        policy = RetentionPolicy(self.settings.max_backups)
        if not policy.enabled:
            logger.debug("Retention disabled, keeping all backups")
            return

        for obj in policy.select_for_deletion(objects):
            try:
                self.storage.delete(obj.key)
            except StorageError as e:
                self.log.error(str(e))
                continue
            self.pruned_keys.append(obj.key)
            self.log.success(f"Successfully removed remote object: {obj.key}")

    def _create_archive(self):
        s = self.settings
        temp_dir = s.temp_dir or tempfile.gettempdir()

        try:
            filename = generate_archive_filename(s.backup_prefix, s.archive_format, now=self.clock())
            archive_base = os.path.join(temp_dir, strip_archive_extension(filename))
            self.log.info(f"Creating: {os.path.join(temp_dir, filename)} "
                          f"which will contain the contents of: {s.backup_folder}")
            self.archive_path = create_archive([s.backup_folder], archive_base, s.archive_format)
        except (CompressionError, ValueError) as e:
            self.log.error(str(e))
            raise _Fatal()

    def _upload(self):
        key = os.path.basename(self.archive_path)

        try:
            size = self.storage.upload(
                self.archive_path,
                key,
                content_type=content_type_for(self.settings.archive_format)
            )
        except StorageError as e:
            self.log.error(str(e))
            # Don't leave the archive behind; the run has failed either way
            try:
                self._delete_archive_file()
            except LocalIOError as cleanup_error:
                self.log.error(str(cleanup_error))
            raise _Fatal()

        self.uploaded_key = key
        self.log.success(f"Successfully uploaded {key} of size {size}")

    def _remove_local_archive(self):
        # Fatal even though the upload already succeeded
        try:
            self._delete_archive_file()
        except LocalIOError as e:
            self.log.error(str(e))
            raise _Fatal()

        self.log.success(f"Successfully removed {os.path.basename(self.archive_path)} from local storage")

    def _delete_archive_file(self):
        """
        Remove the local archive.

        Raises:
            LocalIOError: If the file cannot be removed
        """
        try:
            os.remove(self.archive_path)
        except OSError as e:
            raise LocalIOError(f"Failed to remove {self.archive_path}: {e}")

    def _notify(self):
        try:
            self.notifier.maybe_send(self.log)
        except Exception as e:
            logger.error(f"Notification failed: {e}")

    def _outcome(self, exit_code: int) -> RunOutcome:
        return RunOutcome(
            exit_code=exit_code,
            log=self.log,
            uploaded_key=self.uploaded_key,
            pruned_keys=list(self.pruned_keys)
        )


def run_backup(settings: BackupSettings) -> RunOutcome:
    """
    Run a backup with the given settings.

    Returns:
        RunOutcome of the run
    """
    orchestrator = BackupOrchestrator(settings)
    return orchestrator.run()
