from typing import Union

from .base import Backend, SeriesKey
from .filesystem import FileSystemBackend

BackendType = Union[FileSystemBackend]

__all__ = ["Backend", "SeriesKey", "FileSystemBackend", "BackendType"]
