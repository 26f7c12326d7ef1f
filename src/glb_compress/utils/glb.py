"""GLB container parsing and assembly."""

from __future__ import annotations

import base64
import json
import struct
from typing import Any

from glb_compress.errors import InvalidGlbError
from glb_compress.utils.constants import COMPRESSION_EXTENSIONS, GLB_MAGIC

GLB_VERSION = 2

# GLB chunk types
CHUNK_TYPE_JSON = 0x4E4F534A  # ASCII "JSON"
CHUNK_TYPE_BIN = 0x004E4942  # ASCII "BIN\0"

_HEADER = struct.Struct("<III")
_CHUNK_HEADER = struct.Struct("<II")

_DATA_URI_PREFIX = "data:"


def is_glb(data: bytes) -> bool:
    """Check whether data starts with the GLB magic number."""
    if len(data) < 4:
        return False
    (magic,) = struct.unpack_from("<I", data, 0)
    return magic == GLB_MAGIC


def parse_glb(data: bytes) -> tuple[dict[str, Any], bytes | None]:
    """
    Split a GLB container into its JSON document and binary chunk.

    Raises:
        InvalidGlbError: if the header or chunk layout is malformed.
    """
    if len(data) < _HEADER.size:
        raise InvalidGlbError("File too small to be a valid GLB")

    magic, version, length = _HEADER.unpack_from(data, 0)
    if magic != GLB_MAGIC:
        raise InvalidGlbError(
            f"Invalid GLB file: expected magic 0x{GLB_MAGIC:x}, got 0x{magic:x}"
        )
    if version != GLB_VERSION:
        raise InvalidGlbError(f"Unsupported GLB version: {version}")
    if length > len(data):
        raise InvalidGlbError(
            f"GLB header declares {length} bytes but only {len(data)} present"
        )

    offset = _HEADER.size
    gltf_json: dict[str, Any] | None = None
    binary: bytes | None = None

    while offset + _CHUNK_HEADER.size <= length:
        chunk_length, chunk_type = _CHUNK_HEADER.unpack_from(data, offset)
        offset += _CHUNK_HEADER.size
        chunk = data[offset : offset + chunk_length]
        if len(chunk) < chunk_length:
            raise InvalidGlbError("Truncated GLB chunk")
        offset += chunk_length

        if chunk_type == CHUNK_TYPE_JSON and gltf_json is None:
            gltf_json = _decode_json(chunk)
        elif chunk_type == CHUNK_TYPE_BIN and binary is None:
            binary = bytes(chunk)
        # Unknown chunk types must be ignored

    if gltf_json is None:
        raise InvalidGlbError("GLB has no JSON chunk")
    return gltf_json, binary


def parse_gltf_json(data: bytes) -> tuple[dict[str, Any], bytes | None]:
    """
    Parse a JSON glTF whose buffers are embedded as data URIs.

    The first buffer is returned as the binary chunk; the remaining buffers
    are concatenated after it and their buffer views rebased.
    """
    gltf_json = _decode_json(data)
    buffers = gltf_json.get("buffers", [])
    if not buffers:
        return gltf_json, None

    blobs: list[bytes] = []
    for index, buffer in enumerate(buffers):
        uri = buffer.get("uri")
        if not isinstance(uri, str) or not uri.startswith(_DATA_URI_PREFIX):
            raise InvalidGlbError(
                f"Buffer {index} references an external URI; only embedded buffers are supported"
            )
        blobs.append(decode_data_uri(uri))

    # Rebase every buffer view onto a single binary blob
    bases: list[int] = []
    merged = bytearray()
    for blob in blobs:
        bases.append(len(merged))
        merged.extend(blob)
        merged.extend(b"\x00" * (-len(merged) % 4))
    for view in gltf_json.get("bufferViews", []):
        buffer_index = view.get("buffer", 0)
        if not 0 <= buffer_index < len(bases):
            raise InvalidGlbError(f"bufferView references missing buffer {buffer_index}")
        view["byteOffset"] = view.get("byteOffset", 0) + bases[buffer_index]
        view["buffer"] = 0
    gltf_json["buffers"] = [{"byteLength": len(merged)}]
    return gltf_json, bytes(merged)


def decode_data_uri(uri: str) -> bytes:
    """Decode a base64 ``data:`` URI."""
    header, _, payload = uri.partition(",")
    if not header.endswith(";base64"):
        raise InvalidGlbError("Only base64 data URIs are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except ValueError as e:
        raise InvalidGlbError(f"Malformed data URI: {e}") from e


def build_glb(gltf_json: dict[str, Any], binary: bytes | None) -> bytes:
    """Assemble a GLB container from a JSON document and binary chunk."""
    json_bytes = json.dumps(gltf_json, separators=(",", ":"), allow_nan=False).encode(
        "utf-8"
    )
    json_bytes += b" " * (-len(json_bytes) % 4)

    chunks = [_CHUNK_HEADER.pack(len(json_bytes), CHUNK_TYPE_JSON), json_bytes]
    if binary:
        padded = binary + b"\x00" * (-len(binary) % 4)
        chunks += [_CHUNK_HEADER.pack(len(padded), CHUNK_TYPE_BIN), padded]

    body = b"".join(chunks)
    return _HEADER.pack(GLB_MAGIC, GLB_VERSION, _HEADER.size + len(body)) + body


def compression_extensions_in_use(gltf_json: dict[str, Any]) -> set[str]:
    """Return compression extensions actually referenced by mesh primitives."""
    used: set[str] = set()
    for mesh in gltf_json.get("meshes", []):
        for primitive in mesh.get("primitives", []):
            used.update(
                name
                for name in primitive.get("extensions", {})
                if name in COMPRESSION_EXTENSIONS
            )
    for view in gltf_json.get("bufferViews", []):
        used.update(
            name for name in view.get("extensions", {}) if name in COMPRESSION_EXTENSIONS
        )
    return used


def _decode_json(chunk: bytes) -> dict[str, Any]:
    """Decode a JSON chunk, tolerating trailing padding."""
    try:
        text = chunk.decode("utf-8").rstrip("\x00 ")
        document = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidGlbError(f"Failed to parse glTF JSON: {e}") from e
    if not isinstance(document, dict):
        raise InvalidGlbError("glTF JSON root must be an object")
    return document
