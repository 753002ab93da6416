from .file_store import FileKind, StoredFile, TempFileStore, build_file_url

__all__ = ["FileKind", "StoredFile", "TempFileStore", "build_file_url"]
