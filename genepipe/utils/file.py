#!/usr/bin/env python3
"""
File system utilities for the genepipe pipeline.
Provides safe file operations with error handling.
"""
import os
import shutil
import logging
import tempfile
from contextlib import contextmanager
from typing import Optional, Any, Generator, BinaryIO, TextIO, Union, List, Iterable

from genepipe.exceptions import FileOperationError

logger = logging.getLogger("genepipe.utils.file")

# Process umask, read once; os.umask can only be queried by setting it
_UMASK = os.umask(0)
os.umask(_UMASK)


def ensure_dir(directory: str) -> bool:
    """Ensure a directory exists, creating it if necessary

    Args:
        directory: Directory path

    Returns:
        True if successful

    Raises:
        FileOperationError: If directory cannot be created
    """
    try:
        if not os.path.exists(directory):
            logger.debug(f"Creating directory: {directory}")
            os.makedirs(directory, exist_ok=True)
        return True
    except OSError as e:
        error_msg = f"Error creating directory {directory}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, {"directory": directory}) from e


def check_writable_dir(directory: str) -> None:
    """Create a directory if needed and make sure files can be written there

    Raises:
        FileOperationError: If the directory cannot be created or written
    """
    ensure_dir(directory)
    if not os.access(directory, os.W_OK):
        raise FileOperationError(f"Directory is not writable: {directory}", {"directory": directory})


@contextmanager
def safe_open(file_path: str, mode: str = 'r', encoding: Optional[str] = None) -> Generator[Any, None, None]:
    """Safely open a file with error handling

    Args:
        file_path: Path to the file
        mode: File open mode
        encoding: File encoding

    Yields:
        Open file object

    Raises:
        FileOperationError: If file cannot be opened
    """
    try:
        parent = os.path.dirname(file_path)
        if ('w' in mode or 'a' in mode or '+' in mode) and parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)
            logger.debug(f"Created directory: {parent}")

        if encoding and 'b' not in mode:
            file = open(file_path, mode, encoding=encoding)
        else:
            file = open(file_path, mode)
    except OSError as e:
        error_msg = f"Error accessing file {file_path}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, {"file_path": file_path, "mode": mode}) from e

    try:
        yield file
    finally:
        file.close()


@contextmanager
def atomic_write(file_path: str, mode: str = 'w',
                 encoding: Optional[str] = None) -> Generator[Union[TextIO, BinaryIO], None, None]:
    """Write to a file atomically using a temporary file

    Writes to a temporary file first, then renames it to the target file,
    so an interrupted run never leaves a half-written artifact that a later
    freshness check would take for a finished one.

    Args:
        file_path: Path to the file
        mode: File open mode (must be a write mode)
        encoding: File encoding

    Yields:
        Open temporary file object

    Raises:
        FileOperationError: If file operation fails
        ValueError: If mode is not a write mode
    """
    if 'w' not in mode:
        raise ValueError(f"Invalid mode for atomic_write: {mode} (must be write mode)")

    base_dir = os.path.dirname(file_path) or '.'
    ensure_dir(base_dir)

    try:
        temp_suffix = f".{os.path.basename(file_path)}.tmp"
        with tempfile.NamedTemporaryFile(mode='wb', suffix=temp_suffix,
                                         dir=base_dir, delete=False) as temp_file:
            temp_path = temp_file.name
    except OSError as e:
        error_msg = f"Error during atomic write to {file_path}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, {"file_path": file_path}) from e

    if 'b' in mode:
        final_file = open(temp_path, mode)
    else:
        final_file = open(temp_path, mode, encoding=encoding or 'utf-8')

    try:
        yield final_file
        final_file.close()
        os.chmod(temp_path, 0o666 & ~_UMASK)
        os.replace(temp_path, file_path)
        logger.debug(f"Atomically wrote to file: {file_path}")
    except BaseException:
        if not final_file.closed:
            final_file.close()
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def read_text_file(file_path: str, encoding: str = 'utf-8') -> str:
    """Read text file with error handling

    Raises:
        FileOperationError: If file cannot be read
    """
    with safe_open(file_path, 'r', encoding=encoding) as f:
        return f.read()


def write_text_file(file_path: str, content: str, encoding: str = 'utf-8') -> None:
    """Write text file atomically

    Raises:
        FileOperationError: If file cannot be written
    """
    try:
        with atomic_write(file_path, 'w', encoding=encoding) as f:
            f.write(content)
    except OSError as e:
        error_msg = f"Error writing file {file_path}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, {"file_path": file_path}) from e


def write_lines(file_path: str, lines: Iterable[str]) -> int:
    """Write lines (without trailing newlines) atomically

    Returns:
        Number of lines written
    """
    count = 0
    with atomic_write(file_path, 'w') as f:
        for line in lines:
            f.write(f"{line}\n")
            count += 1
    return count


def concatenate_files(sources: List[str], destination: str) -> None:
    """Concatenate files in the given order into destination"""
    with atomic_write(destination, 'w') as out:
        for source in sources:
            with safe_open(source, 'r') as f:
                shutil.copyfileobj(f, out)


def copy_tree(source: str, destination: str) -> None:
    """Replace destination with an exact copy of source

    Raises:
        FileOperationError: If the copy fails
    """
    try:
        if os.path.exists(destination):
            shutil.rmtree(destination)
        shutil.copytree(source, destination)
    except OSError as e:
        error_msg = f"Error copying {source} to {destination}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, {"source": source, "destination": destination}) from e


def remove_tree(directory: str) -> bool:
    """Remove a directory tree if it exists

    Returns:
        True if something was removed
    """
    if not os.path.exists(directory):
        return False
    try:
        shutil.rmtree(directory)
    except OSError as e:
        error_msg = f"Error removing directory {directory}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, {"directory": directory}) from e
    logger.debug(f"Removed directory: {directory}")
    return True

