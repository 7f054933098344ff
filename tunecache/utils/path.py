"""
Utilities for handling file paths.
"""

from pathlib import Path


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def file_size(path: Path) -> int:
    """Returns the size of a file in bytes, or 0 if it doesn't exist."""
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0
