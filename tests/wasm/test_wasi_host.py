"""Tests for the in-memory WASI host."""

from __future__ import annotations

from glb_compress.wasm.constants import (
    OFLAGS_CREAT,
    WASI_EBADF,
    WASI_EINVAL,
    WASI_ENOENT,
    WASI_ESUCCESS,
    WHENCE_CUR,
    WHENCE_END,
)

# Scratch layout inside the fake memory
IOVEC = 0
DATA = 100
RESULT = 200
PATH = 300


def _open(m, name: str, oflags: int = 0, parent: int = 4) -> int:
    encoded = name.encode("utf-8")
    m.put(PATH, encoded)
    errno = m.host.wasi_path_open32(parent, 0, PATH, len(encoded), oflags, 0, 0, 0, RESULT)
    assert errno == WASI_ESUCCESS
    return m.u32(RESULT)


class TestVirtualFs:
    """Tests for VirtualFs descriptor table."""

    def test_standard_descriptors(self) -> None:
        """stdout, stderr and two preopens are present up front."""
        from glb_compress.wasm.wasi import Preopen, StdStream, VirtualFs

        fs = VirtualFs.with_files({"input.glb": b"x"})

        assert isinstance(fs.fds[1], StdStream)
        assert isinstance(fs.fds[2], StdStream)
        assert fs.fds[3] == Preopen(mount="/", prefix="/")
        assert isinstance(fs.fds[4], Preopen)

    def test_allocate_uses_lowest_free_descriptor(self) -> None:
        """Opened files start after the preopens and reuse freed slots."""
        from glb_compress.wasm.wasi import OpenFile, VirtualFs

        fs = VirtualFs.with_files({})
        first = fs.allocate(OpenFile(name="a", data=bytearray(), size=0))
        second = fs.allocate(OpenFile(name="b", data=bytearray(), size=0))
        del fs.fds[first]

        assert (first, second) == (5, 6)
        assert fs.allocate(OpenFile(name="c", data=bytearray(), size=0)) == 5


class TestStdStreams:
    """Tests for fd_write on stdio."""

    def test_writes_are_collected_in_log(self, memory_host) -> None:
        """Both stdout and stderr append to the shared log."""
        m = memory_host()
        m.put(DATA, b"hello ")
        m.iovec(IOVEC, DATA, 6)

        assert m.host.wasi_fd_write(1, IOVEC, 1, RESULT) == WASI_ESUCCESS
        m.put(DATA, b"world")
        m.iovec(IOVEC, DATA, 5)
        m.host.wasi_fd_write(2, IOVEC, 1, RESULT)

        assert bytes(m.fs.log) == b"hello world"
        assert m.u32(RESULT) == 5

    def test_write_to_preopen_fails(self, memory_host) -> None:
        """Directories cannot be written."""
        m = memory_host()

        assert m.host.wasi_fd_write(3, IOVEC, 0, RESULT) == WASI_EBADF

    def test_write_to_unknown_descriptor_fails(self, memory_host) -> None:
        m = memory_host()

        assert m.host.wasi_fd_write(42, IOVEC, 0, RESULT) == WASI_EBADF


class TestFiles:
    """Tests for path_open, fd_read, fd_write, fd_seek and fd_close."""

    def test_reads_input_file(self, memory_host) -> None:
        """An existing file is readable in chunks."""
        m = memory_host({"input.glb": b"glTFDATA"})
        fd = _open(m, "input.glb")
        m.iovec(IOVEC, DATA, 4)

        assert m.host.wasi_fd_read(fd, IOVEC, 1, RESULT) == WASI_ESUCCESS
        assert m.get(DATA, 4) == b"glTF"
        assert m.u32(RESULT) == 4

        m.host.wasi_fd_read(fd, IOVEC, 1, RESULT)
        assert m.get(DATA, 4) == b"DATA"

    def test_read_past_end_returns_zero(self, memory_host) -> None:
        m = memory_host({"input.glb": b"ab"})
        fd = _open(m, "input.glb")
        m.iovec(IOVEC, DATA, 16)

        m.host.wasi_fd_read(fd, IOVEC, 1, RESULT)
        m.host.wasi_fd_read(fd, IOVEC, 1, RESULT)

        assert m.u32(RESULT) == 0

    def test_missing_file(self, memory_host) -> None:
        """Opening an unknown path without O_CREAT fails."""
        m = memory_host()
        m.put(PATH, b"nope.glb")

        errno = m.host.wasi_path_open32(4, 0, PATH, 8, 0, 0, 0, 0, RESULT)

        assert errno == WASI_ENOENT

    def test_root_preopen_prefixes_path(self, memory_host) -> None:
        """Paths opened under ``/`` are stored with a leading slash."""
        m = memory_host({"/abs.glb": b"x"})

        fd = _open(m, "abs.glb", parent=3)

        assert m.fs.fds[fd].name == "/abs.glb"

    def test_written_file_is_saved_on_close(self, memory_host) -> None:
        """Created files land in the file table when closed."""
        m = memory_host()
        fd = _open(m, "output.glb", OFLAGS_CREAT)
        m.put(DATA, b"packed")
        m.iovec(IOVEC, DATA, 6)

        m.host.wasi_fd_write(fd, IOVEC, 1, RESULT)
        assert "output.glb" not in m.fs.files
        assert m.host.wasi_fd_close(fd) == WASI_ESUCCESS

        assert m.fs.files["output.glb"] == b"packed"
        assert fd not in m.fs.fds

    def test_large_write_grows_buffer(self, memory_host) -> None:
        """Writes past the initial allocation extend the file."""
        m = memory_host()
        fd = _open(m, "output.glb", OFLAGS_CREAT)
        m.put(DATA, b"z" * 1000)
        m.iovec(IOVEC, DATA, 1000)

        for _ in range(6):
            m.host.wasi_fd_write(fd, IOVEC, 1, RESULT)
        m.host.wasi_fd_close(fd)

        assert m.fs.files["output.glb"] == b"z" * 6000

    def test_seek(self, memory_host) -> None:
        """Seeking is bounded by the file size."""
        m = memory_host({"input.glb": b"0123456789"})
        fd = _open(m, "input.glb")

        assert m.host.wasi_fd_seek32(fd, -3, WHENCE_END, RESULT) == WASI_ESUCCESS
        assert m.u32(RESULT) == 7
        assert m.host.wasi_fd_seek32(fd, 1, WHENCE_CUR, RESULT) == WASI_ESUCCESS
        assert m.u32(RESULT) == 8
        assert m.host.wasi_fd_seek32(fd, 5, WHENCE_CUR, RESULT) == WASI_EINVAL
        assert m.host.wasi_fd_seek32(1, 0, WHENCE_CUR, RESULT) == WASI_EBADF

    def test_close_unknown_descriptor(self, memory_host) -> None:
        m = memory_host()

        assert m.host.wasi_fd_close(99) == WASI_EBADF


class TestPreopens:
    """Tests for fd_prestat_get and fd_prestat_dir_name."""

    def test_prestat_reports_mount_length(self, memory_host) -> None:
        import struct

        m = memory_host()

        assert m.host.wasi_fd_prestat_get(3, RESULT) == WASI_ESUCCESS
        assert struct.unpack("<II", m.get(RESULT, 8)) == (0, 1)
        assert m.host.wasi_fd_prestat_get(1, RESULT) == WASI_EBADF

    def test_dir_name(self, memory_host) -> None:
        """The mount name is copied when the buffer length matches."""
        m = memory_host()
        mount = m.fs.fds[4].mount.encode("utf-8")

        assert m.host.wasi_fd_prestat_dir_name(4, PATH, len(mount)) == WASI_ESUCCESS
        assert m.get(PATH, len(mount)) == mount
        assert m.host.wasi_fd_prestat_dir_name(4, PATH, 2) == WASI_EINVAL

    def test_fdstat_filetypes(self, memory_host) -> None:
        """Preopens are directories, everything else a regular file."""
        from glb_compress.wasm.constants import FILETYPE_DIRECTORY, FILETYPE_REGULAR_FILE

        m = memory_host()

        m.host.wasi_fd_fdstat_get(3, RESULT)
        assert m.get(RESULT, 1)[0] == FILETYPE_DIRECTORY
        m.host.wasi_fd_fdstat_get(1, RESULT)
        assert m.get(RESULT, 1)[0] == FILETYPE_REGULAR_FILE
