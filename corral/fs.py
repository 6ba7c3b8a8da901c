"""File systems rooted at a directory, for serving static files."""

from __future__ import annotations

import errno
import os
import posixpath
import stat as _stat
from typing import Optional, Union


class DirFile:
    """A file or directory opened below a :class:`DirFS` root."""

    def __init__(self, path: Union[str, os.PathLike]):
        self.path = os.fspath(path)
        self._stat = os.stat(self.path)
        self.is_dir = _stat.S_ISDIR(self._stat.st_mode)
        self._entries: Optional[list[str]] = None
        self._closed = False

    @property
    def name(self) -> str:
        return os.path.basename(os.path.normpath(self.path))

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed file")

    def stat(self) -> os.stat_result:
        """Return the stat result taken when the file was opened."""
        self._check_open()
        return self._stat

    def read(self) -> bytes:
        """Return the whole content of a regular file."""
        self._check_open()
        if self.is_dir:
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), self.path)
        with open(self.path, "rb") as handle:
            return handle.read()

    def readdir(self, count: int = 0) -> list[str]:
        """Return entry names; all remaining ones if count <= 0, else up to count."""
        self._check_open()
        if not self.is_dir:
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), self.path)
        if self._entries is None:
            self._entries = sorted(os.listdir(self.path))
        if count <= 0:
            chunk, self._entries = self._entries, []
        else:
            chunk, self._entries = self._entries[:count], self._entries[count:]
        return chunk

    def close(self) -> None:
        """Close the file."""
        self._closed = True

    def __enter__(self) -> "DirFile":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class NeuteredDirFile:
    """A file wrapper whose directory listing is always empty."""

    def __init__(self, file: DirFile):
        self._file = file

    @property
    def path(self) -> str:
        return self._file.path

    @property
    def is_dir(self) -> bool:
        return self._file.is_dir

    @property
    def name(self) -> str:
        return self._file.name

    def stat(self) -> os.stat_result:
        """Return the wrapped file's stat result."""
        return self._file.stat()

    def read(self) -> bytes:
        """Return the wrapped file's content."""
        return self._file.read()

    def readdir(self, count: int = 0) -> list[str]:
        """Return no entries, so directories cannot be listed."""
        if self._file.closed:
            raise ValueError("I/O operation on closed file")
        entries: list[str] = []
        return entries

    def close(self) -> None:
        """Close the wrapped file."""
        self._file.close()

    def __enter__(self) -> "NeuteredDirFile":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class DirFS:
    """Open slash-separated names below a root directory."""

    def __init__(self, root: Union[str, os.PathLike]):
        self.root = os.fspath(root) or "."

    def open(self, name: str) -> DirFile:
        """Open a name; '..' elements cannot climb above the root."""
        if os.sep != "/" and os.sep in name:
            raise ValueError("invalid character in file path")
        relative = posixpath.normpath("/" + name).lstrip("/")
        parts = [part for part in relative.split("/") if part]
        return DirFile(os.path.join(self.root, *parts))


class OnlyFilesFS:
    """A file system that opens files but never lists directories."""

    def __init__(self, fs: DirFS):
        self.fs = fs

    def open(self, name: str) -> NeuteredDirFile:
        """Open a name from the wrapped file system."""
        return NeuteredDirFile(self.fs.open(name))


def dir_fs(root: Union[str, os.PathLike], list_directory: bool) -> Union[DirFS, OnlyFilesFS]:
    """Return a file system at root, listing directories only if asked."""
    fs = DirFS(root)
    if list_directory:
        return fs
    return OnlyFilesFS(fs)