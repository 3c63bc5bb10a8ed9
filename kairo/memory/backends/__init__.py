"""Memory record backends."""

from kairo.memory.backends.base import MemoryBackend
from kairo.memory.backends.file import FileBackend

__all__ = ["MemoryBackend", "FileBackend"]
