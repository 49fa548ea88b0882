"""
Log file discovery.

Finds the conversation log files written under the log root.
"""

import logging
import os
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)

LOG_EXTENSION = ".jsonl"


class LogScanner:
    """Enumerates log files below a root directory.

    A missing root is the normal state before the first conversation has been
    logged, so it yields no files rather than an error.
    """

    def __init__(self, root: Path, extension: str = LOG_EXTENSION):
        self.root = Path(root).expanduser()
        self.extension = extension

    def scan(self) -> List[Path]:
        """Recursively list log files, skipping hidden files and directories.

        Returns:
            Sorted list of file paths; order carries no meaning
        """
        if not self.root.is_dir():
            logger.debug("Log root %s does not exist", self.root)
            return []

        files: List[Path] = []
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=self._on_walk_error):
            dirnames[:] = [name for name in dirnames if not name.startswith(".")]
            for filename in filenames:
                if filename.startswith(".") or not filename.endswith(self.extension):
                    continue
                path = Path(dirpath) / filename
                if path.is_file():
                    files.append(path)

        files.sort()
        logger.debug("Found %d log files under %s", len(files), self.root)
        return files

    @staticmethod
    def _on_walk_error(error: OSError) -> None:
        logger.debug("Skipping unreadable directory %s: %s", error.filename, error)
