"""
Compression pipeline: cleanup transforms followed by final compression.

One call to :func:`compress` walks a document forward through a fixed
sequence of phases. Whether the document has a skin decides which
transforms are safe: vertex merging, welding and reordering destroy
per-vertex skin data and only run on static documents, while weight
normalization only runs on skinned ones. Draco input is decoded by the
reader; meshopt input is first rewritten uncompressed by gltfpack.

The cleaned document is serialized once. That buffer goes to the native
gltfpack binary first; if it is missing, fails or times out, the same
buffer goes to the fallback codec (WASM gltfpack, or an in-process
quantize-and-write pass when the WASM module is not bundled).
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

from glb_compress import wasm
from glb_compress.analyzers.animations import analyze_animations
from glb_compress.analyzers.complexity import (
    analyze_mesh_complexity,
    find_instancing_candidates,
)
from glb_compress.analyzers.uv_maps import analyze_unused_uv_maps
from glb_compress.cleaners.animation import remove_static_tracks_with_bake
from glb_compress.cleaners.geometry import (
    merge_by_distance,
    plan_bloat_decimation,
    remove_degenerate_faces,
)
from glb_compress.cleaners.quantize import quantize
from glb_compress.cleaners.reorder import reorder
from glb_compress.cleaners.resample import resample
from glb_compress.cleaners.simplify import SimplifyReport, simplify
from glb_compress.cleaners.structure import (
    PruneReport,
    dedup,
    prune,
    strip_compression_extensions,
    weld,
)
from glb_compress.cleaners.textures import compress_textures
from glb_compress.cleaners.uv_maps import remove_unused_uvs
from glb_compress.cleaners.weights import normalize_weights
from glb_compress.errors import (
    CompressedGeometryError,
    CompressionFailedError,
    InvalidGlbError,
)
from glb_compress.scene.io import read_binary, write_binary
from glb_compress.utils import parse_simplify_ratio, with_temp_dir
from glb_compress.utils.constants import (
    ENV_DEBUG_DIR,
    ENV_FORCE_FALLBACK,
    ENV_GLTFPACK_TIMEOUT,
    GLTFPACK_TIMEOUT,
    MERGE_TOLERANCE,
    MESH_WARN_THRESHOLD,
    PRESETS,
    TEXTURE_MAX_SIZE,
    CompressPreset,
)
from glb_compress.utils.glb import is_glb
from glb_compress.utils.gltfpack import (
    build_decode_args,
    build_fallback_args,
    build_gltfpack_args,
    find_gltfpack,
    gltfpack_version,
    run_gltfpack,
)
from glb_compress.utils.logging import LogSink, PipelineLog, format_bytes, timed

CompressMethod = Literal["external", "fallback"]

_TRUTHY = ("1", "true", "yes")


class PipelineState(str, Enum):
    """Phases of one compression call, in the only order they may occur."""

    LOADED = "loaded"
    STRIPPED_COMPRESSION = "stripped_compression"
    CLEANUP = "cleanup"
    GEOMETRY = "geometry"
    GPU = "gpu"
    ANIMATION = "animation"
    TEXTURE = "texture"
    SIMPLIFY = "simplify"
    SERIALIZED = "serialized"
    FINAL_COMPRESSION = "final_compression"
    DONE = "done"


_STATE_ORDER = {state: i for i, state in enumerate(PipelineState)}


@dataclass
class CompressOptions:
    """Per-call settings. Environment variables fill in unset fields."""

    preset: CompressPreset = "default"
    simplify_ratio: float | None = None
    quiet: bool = False
    on_log: LogSink | None = None
    gltfpack_timeout: float | None = None
    gltfpack_path: str | None = None
    auto_decimate: bool = True
    max_texture_size: int = TEXTURE_MAX_SIZE
    webp_textures: bool = True

    def __post_init__(self) -> None:
        if self.preset not in PRESETS:
            raise ValueError(f"Unknown preset {self.preset!r}; choose from {', '.join(PRESETS)}")
        if self.simplify_ratio is not None and parse_simplify_ratio(self.simplify_ratio) is None:
            raise ValueError(
                f"simplify_ratio must be strictly between 0 and 1, got {self.simplify_ratio}"
            )
        if self.gltfpack_timeout is not None and self.gltfpack_timeout <= 0:
            raise ValueError("gltfpack_timeout must be positive")


@dataclass
class CompressResult:
    buffer: bytes
    method: CompressMethod
    original_size: int
    clean_size: int
    skinned: bool
    phases: list[PipelineState] = field(default_factory=list)
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.buffer)

    @property
    def reduction(self) -> float:
        """Fraction of the input size saved (negative if the output grew)."""
        if self.original_size <= 0:
            return 0.0
        return 1.0 - self.size / self.original_size


class _PipelineRun:
    """Forward-only phase tracker for one call."""

    def __init__(self) -> None:
        self.state = PipelineState.LOADED
        self.phases: list[PipelineState] = [PipelineState.LOADED]
        self.timings: dict[str, float] = {}

    def advance(self, state: PipelineState) -> None:
        assert _STATE_ORDER[state] > _STATE_ORDER[self.state], (
            f"cannot move from {self.state.value} to {state.value}"
        )
        self.state = state
        self.phases.append(state)

    @contextmanager
    def phase(self, state: PipelineState, label: str) -> Iterator[None]:
        self.advance(state)
        with timed(label, print_on_exit=False) as t:
            yield
        self.timings[label] = t.elapsed


# Shared one-time initialization
_init_lock = threading.Lock()
_initialized = False
_gltfpack: str | None = None
_wasm_ready = False


def init(log: LogSink | None = None) -> None:
    """
    Detect the native gltfpack binary and warm up the WASM codec.

    Safe to call from several threads; the first caller does the work and
    the rest wait for it. Later calls return immediately.
    """
    global _initialized, _gltfpack, _wasm_ready
    with _init_lock:
        if _initialized:
            return
        emit = log or (lambda msg: None)

        path = find_gltfpack()
        version = gltfpack_version(path) if path else None
        _gltfpack = path if version else None
        if _gltfpack:
            emit(f"gltfpack: {version}")
        else:
            emit("gltfpack not found, will use fallback codec")

        _wasm_ready = wasm.warm_up()
        emit("WASM codec ready" if _wasm_ready else "WASM codec unavailable")
        _initialized = True


def has_gltfpack() -> bool:
    """Whether a working native gltfpack was found by :func:`init`."""
    init()
    return _gltfpack is not None


def reset() -> None:
    """Forget initialization results (for testing)."""
    global _initialized, _gltfpack, _wasm_ready
    with _init_lock:
        _initialized = False
        _gltfpack = None
        _wasm_ready = False


def _resolve_gltfpack(options: CompressOptions) -> str | None:
    if os.environ.get(ENV_FORCE_FALLBACK, "").lower() in _TRUTHY:
        return None
    if options.gltfpack_path:
        return find_gltfpack(options.gltfpack_path)
    init()
    return _gltfpack


def _resolve_timeout(options: CompressOptions, log: PipelineLog) -> float:
    if options.gltfpack_timeout is not None:
        return options.gltfpack_timeout
    raw = os.environ.get(ENV_GLTFPACK_TIMEOUT)
    if raw:
        try:
            value = float(raw)
        except ValueError:
            value = 0.0
        if value > 0:
            return value
        log.warn(f"Ignoring invalid {ENV_GLTFPACK_TIMEOUT}={raw!r}")
    return GLTFPACK_TIMEOUT


def _debug_dump(name: str, data: bytes, log: PipelineLog) -> None:
    directory = os.environ.get(ENV_DEBUG_DIR)
    if not directory:
        return
    path = Path(directory) / name
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as e:
        log.warn(f"Debug: could not write {path}: {e}")
        return
    log(f"Debug: saved {path}")


def _log_prune(report: PruneReport, log: PipelineLog) -> None:
    if report.total == 0:
        return
    parts = [
        f"{count} {label}"
        for label, count in (
            ("channels", report.channels),
            ("samplers", report.samplers),
            ("animations", report.animations),
            ("primitives", report.primitives),
            ("meshes", report.meshes),
            ("vertices", report.vertices),
        )
        if count
    ]
    log(f"prune: removed {', '.join(parts)}")


def _log_simplify(label: str, report: SimplifyReport, log: PipelineLog) -> None:
    if report.primitives == 0:
        log(f"{label}: nothing to simplify")
        return
    log(
        f"{label}: {report.primitives} primitive(s), "
        f"{report.triangles_before} -> {report.triangles_after} triangles, "
        f"{report.vertices_before} -> {report.vertices_after} verts"
    )


def compress(data: bytes, options: CompressOptions | None = None) -> CompressResult:
    """
    Optimize a GLB and compress it.

    Args:
        data: GLB bytes (or JSON glTF with embedded buffers)
        options: Per-call settings; defaults are used when omitted

    Returns:
        CompressResult with the output buffer and the method that produced it

    Raises:
        InvalidGlbError: if the input cannot be parsed or its compressed
            geometry decoded (before any transform)
        CompressionFailedError: if every compression path fails
    """
    options = options or CompressOptions()
    log = PipelineLog(options.on_log, quiet=options.quiet)
    run = _PipelineRun()

    try:
        doc = read_binary(data)
    except CompressedGeometryError as e:
        doc = read_binary(_decode_compressed(data, e.extensions, options, log))
    _debug_dump("debug-raw.glb", data, log)
    skinned = doc.has_skins

    with run.phase(PipelineState.STRIPPED_COMPRESSION, "Strip compression"):
        for name in strip_compression_extensions(doc):
            log(f"Removing extension: {name}")

    with run.phase(PipelineState.CLEANUP, "Cleanup"):
        for line in analyze_mesh_complexity(doc).summary_lines():
            log(line)
        stats = analyze_animations(doc)
        if stats is not None:
            log(stats.summary())
        merged = dedup(doc)
        if merged:
            log(f"dedup: shared {merged} duplicate accessors")
        _log_prune(prune(doc), log)
        for warn in analyze_unused_uv_maps(doc):
            log(f"  {warn['mesh']}: unused UV sets {', '.join(warn['unused_uvs'])}")
        removed = remove_unused_uvs(doc)
        if removed:
            log(f"removeUnusedUVs: removed {removed} unused UV set(s)")
        if skinned:
            log("Skinned model detected - using conservative transforms")
        else:
            welded = weld(doc)
            if welded:
                log(f"weld: merged {welded} identical vertices")

    if not skinned:
        with run.phase(PipelineState.GEOMETRY, "Geometry"):
            removed = merge_by_distance(doc, MERGE_TOLERANCE)
            if removed:
                log(f"mergeByDistance: removed {removed} duplicate vertices")
            removed = remove_degenerate_faces(doc)
            if removed:
                log(f"removeDegenerateFaces: removed {removed} degenerate triangles")
            _log_prune(prune(doc), log)
            plan = plan_bloat_decimation(doc, MESH_WARN_THRESHOLD) if options.auto_decimate else None
            if plan is not None:
                log(
                    f"decimateBloated: {len(plan.bloated)} mesh(es) exceed "
                    f"{plan.threshold} verts"
                )
                for mesh_name, verts, target in plan.bloated:
                    log(f"  {mesh_name}: {verts} -> ~{target} verts")
                _log_simplify("decimateBloated", simplify(doc, plan.ratio), log)

    with run.phase(PipelineState.GPU, "GPU"):
        if not skinned:
            reordered = reorder(doc)
            if reordered:
                log(f"reorder: reordered {reordered} primitive(s) for vertex fetch")
            shared = find_instancing_candidates(doc)
            if shared:
                log(f"instance: {len(shared)} mesh(es) shared by several nodes (gltfpack -mi)")

    with run.phase(PipelineState.ANIMATION, "Animation"):
        dropped = resample(doc)
        if dropped:
            log(f"resample: removed {dropped} redundant keyframes")
        tracks = remove_static_tracks_with_bake(doc)
        if tracks.removed or tracks.kept_no_consensus:
            parts = [f"{tracks.removed} tracks removed (global consensus)"]
            if tracks.kept_no_consensus:
                parts.append(f"{tracks.kept_no_consensus} kept (no consensus)")
            log(f"removeStaticTracks: {', '.join(parts)}")
        if skinned:
            fixed = normalize_weights(doc)
            if fixed:
                log(f"normalizeWeights: fixed {fixed} vertices")

    with run.phase(PipelineState.TEXTURE, "Textures"):
        textures = compress_textures(
            doc, max_size=options.max_texture_size, webp=options.webp_textures
        )
        if textures.resized or textures.converted:
            log(
                f"textures: {textures.resized} resized, {textures.converted} to WebP "
                f"({format_bytes(textures.bytes_before)} -> {format_bytes(textures.bytes_after)})"
            )
        for skipped in textures.skipped:
            log.warn(f"texture skipped: {skipped}")
        _log_prune(prune(doc), log)

    if options.simplify_ratio is not None:
        with run.phase(PipelineState.SIMPLIFY, "Simplify"):
            log(f"User simplify: {options.simplify_ratio * 100:.0f}%")
            _log_simplify("simplify", simplify(doc, options.simplify_ratio), log)
            _log_prune(prune(doc), log)

    with run.phase(PipelineState.SERIALIZED, "Serialize"):
        clean = write_binary(doc)
        log(f"Clean GLB: {format_bytes(len(clean))}")
        _debug_dump("debug-clean.glb", clean, log)

    with run.phase(PipelineState.FINAL_COMPRESSION, "Final compression"):
        buffer, method = _dispatch(clean, skinned, options, log)

    run.advance(PipelineState.DONE)
    return CompressResult(
        buffer=buffer,
        method=method,
        original_size=len(data),
        clean_size=len(clean),
        skinned=skinned,
        phases=run.phases,
        timings=run.timings,
    )


def _dispatch(
    clean: bytes,
    skinned: bool,
    options: CompressOptions,
    log: PipelineLog,
) -> tuple[bytes, CompressMethod]:
    """Try the native binary, then the fallback codec, on the same clean buffer."""
    gltfpack = _resolve_gltfpack(options)
    if gltfpack:
        log(f"Running gltfpack (preset: {options.preset})...")
        buffer, message = _compress_external(
            gltfpack,
            clean,
            build_gltfpack_args(options.preset, skinned),
            _resolve_timeout(options, log),
        )
        if buffer is not None:
            log(f"gltfpack: {format_bytes(len(buffer))}")
            return buffer, "external"
        log.warn(f"gltfpack failed: {message}")

    log("Running fallback codec...")
    buffer = _compress_fallback(clean, skinned, log)
    return buffer, "fallback"


def _compress_external(
    gltfpack: str, clean: bytes, args: list[str], timeout: float
) -> tuple[bytes | None, str]:
    with with_temp_dir() as tmp:
        input_path = tmp / "clean.glb"
        output_path = tmp / "compressed.glb"
        input_path.write_bytes(clean)
        success, _, message = run_gltfpack(
            gltfpack, input_path, output_path, args, timeout=timeout
        )
        if not success:
            return None, message
        buffer = output_path.read_bytes()
    if not is_glb(buffer):
        return None, "gltfpack output is not a GLB file"
    return buffer, message


def _decode_compressed(
    data: bytes, extensions: list[str], options: CompressOptions, log: PipelineLog
) -> bytes:
    """
    Rewrite meshopt-compressed input as a plain GLB with gltfpack.

    Raises:
        InvalidGlbError: if neither gltfpack build can decode the input
    """
    names = ", ".join(extensions)
    args = build_decode_args()
    gltfpack = _resolve_gltfpack(options)
    if gltfpack:
        log(f"Decoding {names} with gltfpack...")
        buffer, message = _compress_external(
            gltfpack, data, args, _resolve_timeout(options, log)
        )
        if buffer is not None:
            return buffer
        log.warn(f"gltfpack could not decode input: {message}")

    success, output, message = wasm.pack_bytes(data, args)
    if success and is_glb(output):
        log(f"Decoded {names} with WASM gltfpack")
        return output
    raise InvalidGlbError(f"Cannot decode {names} input without gltfpack: {message}")


def _compress_fallback(clean: bytes, skinned: bool, log: PipelineLog) -> bytes:
    success, output, message = wasm.pack_bytes(clean, build_fallback_args(skinned))
    if success and is_glb(output):
        log(f"WASM gltfpack: {format_bytes(len(output))}")
        return output
    log(f"{message}; writing quantized GLB in-process")
    try:
        doc = read_binary(clean)
        if not skinned:
            quantized = quantize(doc)
            if quantized:
                log(f"quantize: {quantized} attribute(s) stored as normalized integers")
        buffer = write_binary(doc)
    except (InvalidGlbError, ValueError, TypeError, OSError) as e:
        raise CompressionFailedError(f"Fallback compression failed: {e}") from e
    log(f"fallback: {format_bytes(len(buffer))}")
    return buffer
