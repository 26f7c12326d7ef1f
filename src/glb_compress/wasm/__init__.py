"""WASM-based gltfpack codec using wasmtime."""

from .runner import get_gltfpack, is_available, pack_bytes, reset_gltfpack, warm_up
from .runtime import GltfpackWasm, get_wasm_path

__all__ = [
    "GltfpackWasm",
    "get_gltfpack",
    "get_wasm_path",
    "is_available",
    "pack_bytes",
    "reset_gltfpack",
    "warm_up",
]
