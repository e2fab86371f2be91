"""Storage layer for history, stats and cache files."""

from .debounce import DebouncedWriter
from .json_files import read_json_file, write_json_atomic
from .stats_file import StatsFileStore

__all__ = ["DebouncedWriter", "StatsFileStore", "read_json_file", "write_json_atomic"]
