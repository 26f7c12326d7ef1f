"""In-memory WASI host for the gltfpack module.

Only the syscalls gltfpack's library build imports are provided. Files
live in a dict keyed by path; nothing touches the real filesystem.
"""

from __future__ import annotations

import ctypes
import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .constants import (
    FILETYPE_DIRECTORY,
    FILETYPE_REGULAR_FILE,
    FIRST_FILE_FD,
    OFLAGS_CREAT,
    WASI_EBADF,
    WASI_EINVAL,
    WASI_ENOENT,
    WASI_ENOSYS,
    WASI_ESUCCESS,
    WHENCE_CUR,
    WHENCE_END,
    WHENCE_SET,
)

if TYPE_CHECKING:
    from wasmtime import Instance, Store

# (syscall, parameter count, returns errno)
WASI_IMPORTS: tuple[tuple[str, int, bool], ...] = (
    ("proc_exit", 1, False),
    ("fd_close", 1, True),
    ("fd_fdstat_get", 2, True),
    ("fd_fdstat_set_flags", 2, True),
    ("fd_prestat_get", 2, True),
    ("fd_prestat_dir_name", 3, True),
    ("fd_read", 4, True),
    ("fd_write", 4, True),
    ("fd_seek32", 4, True),
    ("path_open32", 9, True),
    ("path_filestat_get", 5, True),
    ("path_remove_directory", 3, True),
)


@dataclass
class StdStream:
    """stdout/stderr: everything written is appended to the shared log."""


@dataclass
class Preopen:
    mount: str
    prefix: str


@dataclass
class OpenFile:
    name: str
    data: bytearray
    size: int
    position: int = 0
    writable: bool = False


Descriptor = StdStream | Preopen | OpenFile


@dataclass
class VirtualFs:
    """Files visible to the module for one call."""

    files: dict[str, bytes] = field(default_factory=dict)
    log: bytearray = field(default_factory=bytearray)
    fds: dict[int, Descriptor] = field(default_factory=dict)

    @classmethod
    def with_files(cls, files: dict[str, bytes]) -> VirtualFs:
        fs = cls(files=dict(files))
        fs.fds = {
            1: StdStream(),
            2: StdStream(),
            3: Preopen(mount="/", prefix="/"),
            4: Preopen(mount="/gltfpack-$pwd", prefix=""),
        }
        return fs

    def allocate(self, descriptor: Descriptor) -> int:
        fd = FIRST_FILE_FD
        while fd in self.fds:
            fd += 1
        self.fds[fd] = descriptor
        return fd


class WasiHost:
    """Implements the WASI imports against a :class:`VirtualFs`."""

    def __init__(self) -> None:
        self._store: Store | None = None
        self._instance: Instance | None = None
        self._fs = VirtualFs.with_files({})

    # Linear memory access

    def _memory_base(self) -> int:
        exports: Any = self._instance.exports(self._store)  # type: ignore[union-attr]
        memory = exports["memory"]
        pointer = memory.data_ptr(self._store)
        return ctypes.addressof(pointer.contents)

    def _read(self, offset: int, length: int) -> bytes:
        return ctypes.string_at(self._memory_base() + offset, length)

    def _write(self, offset: int, data: bytes) -> None:
        ctypes.memmove(self._memory_base() + offset, data, len(data))

    def _read_u32(self, offset: int) -> int:
        (value,) = struct.unpack("<I", self._read(offset, 4))
        return value

    def _write_u32(self, offset: int, value: int) -> None:
        self._write(offset, struct.pack("<I", value & 0xFFFFFFFF))

    def _iovecs(self, iovs: int, iovs_len: int) -> list[tuple[int, int]]:
        raw = self._read(iovs, 8 * iovs_len)
        return [struct.unpack_from("<II", raw, 8 * i) for i in range(iovs_len)]

    # Syscalls

    def wasi_proc_exit(self, code: int) -> None:
        pass

    def wasi_fd_close(self, fd: int) -> int:
        descriptor = self._fs.fds.pop(fd, None)
        if descriptor is None:
            return WASI_EBADF
        if isinstance(descriptor, OpenFile) and descriptor.writable:
            self._fs.files[descriptor.name] = bytes(descriptor.data[: descriptor.size])
        return WASI_ESUCCESS

    def wasi_fd_fdstat_get(self, fd: int, stat: int) -> int:
        descriptor = self._fs.fds.get(fd)
        if descriptor is None:
            return WASI_EBADF
        filetype = FILETYPE_DIRECTORY if isinstance(descriptor, Preopen) else FILETYPE_REGULAR_FILE
        # fs_filetype, fs_flags, fs_rights_base, fs_rights_inheriting
        self._write(stat, bytes([filetype]) + b"\x00" * 23)
        return WASI_ESUCCESS

    def wasi_fd_fdstat_set_flags(self, fd: int, flags: int) -> int:
        return WASI_ENOSYS

    def wasi_fd_prestat_get(self, fd: int, buf: int) -> int:
        descriptor = self._fs.fds.get(fd)
        if not isinstance(descriptor, Preopen):
            return WASI_EBADF
        self._write(buf, struct.pack("<II", 0, len(descriptor.mount.encode("utf-8"))))
        return WASI_ESUCCESS

    def wasi_fd_prestat_dir_name(self, fd: int, path: int, path_len: int) -> int:
        descriptor = self._fs.fds.get(fd)
        if not isinstance(descriptor, Preopen):
            return WASI_EBADF
        mount = descriptor.mount.encode("utf-8")
        if path_len != len(mount):
            return WASI_EINVAL
        self._write(path, mount)
        return WASI_ESUCCESS

    def wasi_fd_read(self, fd: int, iovs: int, iovs_len: int, nread: int) -> int:
        descriptor = self._fs.fds.get(fd)
        if not isinstance(descriptor, OpenFile):
            return WASI_EBADF
        total = 0
        for buf, buf_len in self._iovecs(iovs, iovs_len):
            chunk = descriptor.data[descriptor.position : min(descriptor.size, descriptor.position + buf_len)]
            self._write(buf, bytes(chunk))
            descriptor.position += len(chunk)
            total += len(chunk)
        self._write_u32(nread, total)
        return WASI_ESUCCESS

    def wasi_fd_write(self, fd: int, iovs: int, iovs_len: int, nwritten: int) -> int:
        descriptor = self._fs.fds.get(fd)
        if descriptor is None or isinstance(descriptor, Preopen):
            return WASI_EBADF
        total = 0
        for buf, buf_len in self._iovecs(iovs, iovs_len):
            chunk = self._read(buf, buf_len)
            if isinstance(descriptor, StdStream):
                self._fs.log.extend(chunk)
            else:
                end = descriptor.position + len(chunk)
                if end > len(descriptor.data):
                    descriptor.data.extend(b"\x00" * max(end - len(descriptor.data), len(descriptor.data)))
                descriptor.data[descriptor.position : end] = chunk
                descriptor.position = end
                descriptor.size = max(descriptor.size, end)
            total += buf_len
        self._write_u32(nwritten, total)
        return WASI_ESUCCESS

    def wasi_fd_seek32(self, fd: int, offset: int, whence: int, newoffset: int) -> int:
        descriptor = self._fs.fds.get(fd)
        if not isinstance(descriptor, OpenFile):
            return WASI_EBADF
        if whence == WHENCE_SET:
            position = offset
        elif whence == WHENCE_CUR:
            position = descriptor.position + offset
        elif whence == WHENCE_END:
            position = descriptor.size + offset
        else:
            return WASI_EINVAL
        if not 0 <= position <= descriptor.size:
            return WASI_EINVAL
        descriptor.position = position
        self._write_u32(newoffset, position)
        return WASI_ESUCCESS

    def wasi_path_open32(
        self,
        parent_fd: int,
        dirflags: int,
        path: int,
        path_len: int,
        oflags: int,
        fs_rights_base: int,
        fs_rights_inheriting: int,
        fdflags: int,
        opened_fd: int,
    ) -> int:
        parent = self._fs.fds.get(parent_fd)
        if not isinstance(parent, Preopen):
            return WASI_EBADF
        name = parent.prefix + self._read(path, path_len).decode("utf-8")

        if oflags & OFLAGS_CREAT:
            descriptor = OpenFile(name=name, data=bytearray(4096), size=0, writable=True)
        elif name in self._fs.files:
            content = bytearray(self._fs.files[name])
            descriptor = OpenFile(name=name, data=content, size=len(content))
        else:
            return WASI_ENOENT

        self._write_u32(opened_fd, self._fs.allocate(descriptor))
        return WASI_ESUCCESS

    def wasi_path_filestat_get(
        self, parent_fd: int, flags: int, path: int, path_len: int, buf: int
    ) -> int:
        if not isinstance(self._fs.fds.get(parent_fd), Preopen):
            return WASI_EBADF
        name = self._read(path, path_len).decode("utf-8")
        filetype = FILETYPE_DIRECTORY if name == "." else FILETYPE_REGULAR_FILE
        stat = bytearray(64)
        stat[16] = filetype
        self._write(buf, bytes(stat))
        return WASI_ESUCCESS

    def wasi_path_remove_directory(self, parent_fd: int, path: int, path_len: int) -> int:
        return WASI_EINVAL
