"""Process-wide gltfpack WASM instance with single-flight initialization."""

from __future__ import annotations

import threading

from .runtime import GltfpackWasm, get_wasm_path

_gltfpack: GltfpackWasm | None = None
# Guards creation of the singleton
_init_lock = threading.Lock()
# Serializes calls into the shared wasmtime store
_call_lock = threading.Lock()


def is_available() -> bool:
    """Check if the WASM codec can be used (wasmtime importable, module bundled)."""
    try:
        import wasmtime  # noqa: F401
    except ImportError:
        return False
    return get_wasm_path().exists()


def get_gltfpack() -> GltfpackWasm:
    """
    Get or create the shared instance.

    The first caller instantiates the module while later callers block on
    the same lock and reuse the result. A failed initialization is not
    cached; the next caller retries.
    """
    global _gltfpack
    with _init_lock:
        if _gltfpack is None:
            instance = GltfpackWasm()
            instance.initialize()
            _gltfpack = instance
        return _gltfpack


def reset_gltfpack() -> None:
    """Drop the shared instance (for testing/cleanup)."""
    global _gltfpack
    with _init_lock:
        _gltfpack = None


def warm_up() -> bool:
    """Initialize the shared instance if possible; returns availability."""
    if not is_available():
        return False

    from wasmtime import Trap, WasmtimeError

    try:
        get_gltfpack()
    except (Trap, WasmtimeError, OSError):
        return False
    return True


def pack_bytes(data: bytes, args: list[str]) -> tuple[bool, bytes, str]:
    """
    Run WASM gltfpack on GLB bytes.

    Never raises for codec failures; returns (success, output, message).
    """
    if not is_available():
        return False, b"", f"WASM gltfpack unavailable (expected module at {get_wasm_path()})"

    from wasmtime import Trap, WasmtimeError

    try:
        gltfpack = get_gltfpack()
        with _call_lock:
            success, output, log = gltfpack.pack(data, args)
    except (Trap, WasmtimeError, OSError, ValueError) as e:
        return False, b"", f"WASM gltfpack error: {e}"
    if not success:
        return False, b"", f"WASM gltfpack failed: {log.strip() or 'no output'}"
    return True, output, log
