"""wasmtime instance of the gltfpack library build."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import WASI_MODULE
from .wasi import WASI_IMPORTS, VirtualFs, WasiHost

INPUT_NAME = "input.glb"
OUTPUT_NAME = "output.glb"


def get_wasm_path() -> Path:
    """Get path to bundled gltfpack.wasm."""
    return Path(__file__).parent / "gltfpack.wasm"


class GltfpackWasm(WasiHost):
    """One instantiated gltfpack module. Not safe for concurrent calls."""

    def __init__(self, wasm_path: Path | None = None) -> None:
        super().__init__()
        self._wasm_path = wasm_path or get_wasm_path()

    def _export(self, name: str) -> Any:
        exports: Any = self._instance.exports(self._store)  # type: ignore[union-attr]
        return exports[name]

    def initialize(self) -> None:
        """Compile and instantiate the module; a no-op once done."""
        if self._instance is not None:
            return

        from wasmtime import Engine, Func, FuncType, Linker, Module, Store, ValType

        engine = Engine()
        store = Store(engine)
        module = Module(engine, self._wasm_path.read_bytes())
        linker = Linker(engine)

        for name, params, returns_errno in WASI_IMPORTS:
            signature = FuncType(
                [ValType.i32()] * params, [ValType.i32()] if returns_errno else []
            )
            linker.define(
                store, WASI_MODULE, name, Func(store, signature, getattr(self, f"wasi_{name}"))
            )

        instance = linker.instantiate(store, module)
        self._store = store
        self._instance = instance

        ctors = instance.exports(store).get("__wasm_call_ctors")
        if ctors:
            ctors(store)

    def _upload_argv(self, argv: list[str]) -> int:
        """Copy a C ``argv`` array into module memory; returns its address."""
        encoded = [arg.encode("utf-8") + b"\x00" for arg in argv]
        table_size = 4 * len(argv)
        buf: int = self._export("malloc")(self._store, table_size + sum(map(len, encoded)))

        cursor = buf + table_size
        for i, arg in enumerate(encoded):
            self._write_u32(buf + 4 * i, cursor)
            self._write(cursor, arg)
            cursor += len(arg)
        return buf

    def pack(self, input_data: bytes, args: list[str]) -> tuple[bool, bytes, str]:
        """
        Run gltfpack over an in-memory GLB.

        Returns:
            Tuple of (success, output_bytes, log)
        """
        self.initialize()
        self._fs = VirtualFs.with_files({INPUT_NAME: input_data})

        argv = ["gltfpack", "-i", INPUT_NAME, "-o", OUTPUT_NAME, *args]
        buf = self._upload_argv(argv)
        try:
            status: int = self._export("pack")(self._store, len(argv), buf)
        finally:
            self._export("free")(self._store, buf)

        log = self._fs.log.decode("utf-8", errors="replace")
        output = self._fs.files.get(OUTPUT_NAME)
        if status != 0 or not output:
            return False, b"", log
        return True, output, log
