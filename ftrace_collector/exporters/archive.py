# ftrace_collector/exporters/archive.py - Package the staged tree
"""
Writes the staged capture to a single gzip-compressed tar archive.
"""

import os
import stat
import tarfile
from pathlib import Path
from typing import Union
import logging

from ftrace_collector.collector.errors import TraceIOError


READ_WRITE_ALL = stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IWGRP | stat.S_IROTH | stat.S_IWOTH
EXECUTE_ALL = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def make_world_accessible(root: Path):
    """
    Equivalent of chmod -R a+rwX: everyone may read and write, and
    directories (or already executable files) become searchable.
    """
    for dirpath, dirnames, filenames in os.walk(root):
        paths = [Path(dirpath)] + [Path(dirpath) / name for name in filenames]
        for path in paths:
            mode = path.stat().st_mode
            new_mode = mode | READ_WRITE_ALL
            if path.is_dir() or mode & EXECUTE_ALL:
                new_mode |= EXECUTE_ALL
            os.chmod(path, stat.S_IMODE(new_mode))


class ArchivePackager:
    """
    Packages a staging directory as a .tar.gz archive.
    """

    def __init__(self, compresslevel: int = 9):
        self.compresslevel = compresslevel
        self.logger = logging.getLogger(__name__)

    def package(self, staging_root: Union[str, Path], archive_path: Union[str, Path]) -> Path:
        """
        Archive everything under staging_root.

        Entries are stored relative to staging_root, so the archive root
        holds formats/, topology/ and traces/ directly.

        Args:
            staging_root: Directory to archive
            archive_path: Destination .tar.gz file

        Returns:
            Path to the archive

        Raises:
            TraceIOError: If the archive cannot be written
        """
        staging_root = Path(staging_root)
        archive_path = Path(archive_path)

        try:
            archive_path.parent.mkdir(parents=True, exist_ok=True)
            make_world_accessible(staging_root)

            with tarfile.open(archive_path, 'w:gz', compresslevel=self.compresslevel) as tar:
                for entry in sorted(staging_root.iterdir()):
                    tar.add(entry, arcname=entry.name)

            os.chmod(archive_path, stat.S_IMODE(archive_path.stat().st_mode) | READ_WRITE_ALL)
        except (OSError, tarfile.TarError) as e:
            raise TraceIOError(f"Error creating archive: {e}", path=archive_path) from e

        self.logger.info(f"Wrote {archive_path} ({archive_path.stat().st_size} bytes)")
        return archive_path
