#!/usr/bin/env python3
"""
genepipe Utilities Module
"""
from .file import (
    ensure_dir, check_writable_dir, safe_open, atomic_write,
    read_text_file, write_text_file, write_lines, concatenate_files,
    copy_tree, remove_tree
)

__all__ = [
    'ensure_dir', 'check_writable_dir', 'safe_open', 'atomic_write',
    'read_text_file', 'write_text_file', 'write_lines', 'concatenate_files',
    'copy_tree', 'remove_tree'
]
