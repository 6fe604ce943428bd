from .filesystem import FilesystemStorageAdapter

__all__ = ["FilesystemStorageAdapter"]
