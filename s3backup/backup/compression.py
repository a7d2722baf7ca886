"""
Compression handlers for backup archives.

Supports multiple formats:
- zip: Standard zip compression (default)
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
"""

import os
import tarfile
import zipfile
from pathlib import Path
from typing import List, Optional
from datetime import datetime


# Sortable: lexical order of names equals creation order
TIMESTAMP_FORMAT = '%Y-%m-%d.%H-%M-%S'

# Format -> (extension, content type)
ARCHIVE_FORMATS = {
    'zip': ('zip', 'application/zip'),
    'tar.gz': ('tar.gz', 'application/gzip'),
    'tar.bz2': ('tar.bz2', 'application/x-bzip2'),
    'tar.xz': ('tar.xz', 'application/x-xz'),
    'none': ('tar', 'application/x-tar'),
}


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def _check_format(compression_format: str):
    if compression_format not in ARCHIVE_FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(ARCHIVE_FORMATS.keys())}"
        )


def create_archive(
    source_paths: List[str],
    output_path: str,
    compression_format: str = 'zip'
) -> str:
    """
    Create a compressed archive from source paths.

    Args:
        source_paths: List of file/directory paths to include in archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('zip', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    if not source_paths:
        raise CompressionError("No source paths provided")

    _check_format(compression_format)

    extension, _ = ARCHIVE_FORMATS[compression_format]
    handler = _create_zip if compression_format == 'zip' else _create_tar
    archive_path = f"{output_path}.{extension}"

    try:
        handler(source_paths, archive_path, compression_format)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        if isinstance(e, CompressionError):
            raise
        raise CompressionError(f"Failed to create archive: {e}")


def _create_zip(source_paths: List[str], archive_path: str, compression_format: str):
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for source_path in source_paths:
            source = Path(source_path)

            if source.is_file():
                zipf.write(source, source.name)
            elif source.is_dir():
                _add_directory_to_zip(zipf, source)
            else:
                raise CompressionError(f"Path does not exist: {source_path}")


def _add_directory_to_zip(zipf: zipfile.ZipFile, directory: Path):
    """
    Recursively add directory to zip archive under its own name.

    Empty directories get an explicit entry so they survive a restore.
    """
    zipf.write(directory, directory.name)

    for item in sorted(directory.rglob('*')):
        relative_path = item.relative_to(directory.parent)
        if item.is_file() or (item.is_dir() and not any(item.iterdir())):
            zipf.write(item, relative_path)


def _create_tar(source_paths: List[str], archive_path: str, compression_format: str):
    mode_map = {
        'tar.gz': 'w:gz',
        'tar.bz2': 'w:bz2',
        'tar.xz': 'w:xz',
        'none': 'w'
    }

    mode = mode_map[compression_format]

    with tarfile.open(archive_path, mode) as tar:
        for source_path in source_paths:
            source = Path(source_path)

            if not source.exists():
                raise CompressionError(f"Path does not exist: {source_path}")

            # Basename only, no leading directory structure
            tar.add(source, arcname=source.name, recursive=True)


def generate_archive_filename(prefix: str, compression_format: str = 'zip',
                              now: Optional[datetime] = None) -> str:
    """
    Generate the archive filename, which is also the object key.

    Format: {prefix}{YYYY-MM-DD.HH-MM-SS}.{ext}

    Args:
        prefix: Backup prefix (e.g. 'backup-')
        compression_format: Compression format
        now: Timestamp to embed (default: current local time)

    Returns:
        Filename (without path)
    """
    _check_format(compression_format)

    timestamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    extension, _ = ARCHIVE_FORMATS[compression_format]

    return f"{prefix}{timestamp}.{extension}"


def strip_archive_extension(filename: str) -> str:
    """
    Strip archive extension from filename.

    Handles multi-part extensions like .tar.gz, .tar.bz2, .tar.xz
    """
    # Longest first so '.tar.gz' wins over '.tar'
    extensions = sorted((ext for ext, _ in ARCHIVE_FORMATS.values()), key=len, reverse=True)
    for extension in extensions:
        if filename.endswith(f".{extension}"):
            return filename[:-(len(extension) + 1)]
    return os.path.splitext(filename)[0]


def content_type_for(compression_format: str) -> str:
    """Content-Type to store alongside an archive of the given format."""
    _check_format(compression_format)
    return ARCHIVE_FORMATS[compression_format][1]
