"""Fixtures for WASI host tests: linear memory backed by a ctypes buffer."""

from __future__ import annotations

import ctypes
import struct
from collections.abc import Callable

import pytest

from glb_compress.wasm.wasi import VirtualFs, WasiHost

MEMORY_SIZE = 4096


class MemoryHost:
    """A WasiHost plus helpers to poke at its fake linear memory."""

    def __init__(self, files: dict[str, bytes]) -> None:
        self.memory = ctypes.create_string_buffer(MEMORY_SIZE)
        self.host = WasiHost()
        self.host._fs = VirtualFs.with_files(files)
        self.host._memory_base = lambda: ctypes.addressof(self.memory)  # type: ignore[method-assign]

    @property
    def fs(self) -> VirtualFs:
        return self.host._fs

    def put(self, offset: int, data: bytes) -> None:
        self.memory[offset : offset + len(data)] = data

    def get(self, offset: int, length: int) -> bytes:
        return self.memory.raw[offset : offset + length]

    def u32(self, offset: int) -> int:
        (value,) = struct.unpack("<I", self.get(offset, 4))
        return value

    def iovec(self, offset: int, buf: int, length: int) -> None:
        self.put(offset, struct.pack("<II", buf, length))


@pytest.fixture
def memory_host() -> Callable[..., MemoryHost]:
    """Factory for a host whose virtual filesystem holds ``files``."""

    def build(files: dict[str, bytes] | None = None) -> MemoryHost:
        return MemoryHost(files or {})

    return build
