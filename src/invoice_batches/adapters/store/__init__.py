from .sqlite import SqliteStore

__all__ = ["SqliteStore"]
