"""
Retention policy for remote backups.

Keeps the newest N backups and selects the rest for deletion. Selection
relies on the store listing objects oldest-first, which holds because
archive names embed a sortable timestamp (see generate_archive_filename).
"""

from typing import List, Sequence

from .storage import RemoteBackupObject


def select_for_deletion(objects: Sequence[RemoteBackupObject], keep: int) -> List[RemoteBackupObject]:
    """
    Select the oldest objects exceeding the retention count.

    Args:
        objects: Listing of backup objects, oldest first
        keep: Number of most recent backups to keep (<= 0 disables retention)

    Returns:
        Objects to delete, in listing order. Empty if nothing exceeds the count.
    """
    if keep <= 0 or len(objects) <= keep:
        return []

    return list(objects[:len(objects) - keep])


class RetentionPolicy:
    """Count-based retention: keep the `keep` most recent backups."""

    def __init__(self, keep: int):
        self.keep = keep

    @property
    def enabled(self) -> bool:
        return self.keep > 0

    def select_for_deletion(self, objects: Sequence[RemoteBackupObject]) -> List[RemoteBackupObject]:
        return select_for_deletion(objects, self.keep)

    def __repr__(self):
        return f'<RetentionPolicy keep={self.keep}>'
