"""Constants and thresholds for GLB compression."""

from typing import Literal, TypedDict

# Maximum upload file size accepted by the CLI (100 MB)
MAX_FILE_SIZE: int = 100 * 1024 * 1024

# GLB magic number (ASCII "glTF", little-endian)
GLB_MAGIC: int = 0x46546C67

# Seconds to wait for a native gltfpack process before killing it
GLTFPACK_TIMEOUT: float = 60.0

# Per-mesh vertex count above which a mesh is reported as bloated
MESH_WARN_THRESHOLD: int = 2000

# Total scene vertex count above which the scene is reported as heavy
TOTAL_WARN_THRESHOLD: int = 15000

# Spatial-hash cell size for merge-by-distance
MERGE_TOLERANCE: float = 0.0001

# Triangles with a smaller area are dropped as degenerate
DEGENERATE_MIN_AREA: float = 1e-10

# Absolute tolerance for static animation track comparison
STATIC_TRACK_TOLERANCE: float = 1e-6

# Keyframe resampling tolerance
RESAMPLE_TOLERANCE: float = 1e-4

# Maximum texture dimension after recompression
TEXTURE_MAX_SIZE: int = 1024

# WebP encoder quality for texture recompression
WEBP_QUALITY: int = 80

# Auto-decimation ratio bounds for bloated static meshes
DECIMATE_TARGET_RATIO: float = 0.5
DECIMATE_RATIO_BOUNDS: tuple[float, float] = (0.1, 0.8)

# Nodes that must share a mesh before gltfpack turns it into GPU instances
INSTANCE_MIN: int = 2

# glTF extensions that hold compressed mesh data
COMPRESSION_EXTENSIONS: tuple[str, ...] = (
    "KHR_draco_mesh_compression",
    "EXT_meshopt_compression",
)

# Environment variables
ENV_GLTFPACK_PATH: str = "GLB_COMPRESS_GLTFPACK"
ENV_GLTFPACK_TIMEOUT: str = "GLB_COMPRESS_GLTFPACK_TIMEOUT"
ENV_FORCE_FALLBACK: str = "GLB_COMPRESS_FORCE_FALLBACK"
ENV_DEBUG_DIR: str = "GLB_COMPRESS_DEBUG_DIR"

CompressPreset = Literal["default", "balanced", "aggressive", "max"]


class GltfpackPresetFlags(TypedDict):
    """Extra gltfpack flags for one preset tier."""

    skinned: list[str]
    static: list[str]


# gltfpack flag presets, benchmarked on a 30 MB skinned avatar
# (77 animations, 89k verts):
#   default    -> -80.4%
#   balanced   -> -82.3%
#   aggressive -> -84.1%  (best quality/size for skinned avatars)
#   max        -> -84.3%  (drops -kn, normals requantized)
PRESETS: dict[CompressPreset, GltfpackPresetFlags] = {
    "default": {
        "skinned": ["-vp", "20", "-kn"],
        "static": ["-vp", "16"],
    },
    "balanced": {
        "skinned": [
            "-vp", "20",
            "-kn",
            "-at", "14",
            "-ar", "10",
            "-as", "14",
            "-af", "24",
        ],
        "static": [
            "-vp", "16",
            "-at", "14",
            "-ar", "10",
            "-as", "14",
            "-af", "24",
        ],
    },
    "aggressive": {
        "skinned": [
            "-vp", "20",
            "-kn",
            "-at", "12",
            "-ar", "8",
            "-as", "12",
            "-af", "15",
        ],
        "static": [
            "-vp", "14",
            "-at", "12",
            "-ar", "8",
            "-as", "12",
            "-af", "15",
        ],
    },
    "max": {
        "skinned": [
            "-cz",
            "-vp", "14",
            "-at", "12",
            "-ar", "8",
            "-as", "12",
            "-af", "15",
            "-si", "0.95",
            "-slb",
        ],
        "static": [
            "-cz",
            "-vp", "14",
            "-at", "12",
            "-ar", "8",
            "-as", "12",
            "-af", "15",
            "-si", "0.95",
            "-slb",
        ],
    },
}  # fmt: skip

PRESET_DESCRIPTIONS: dict[CompressPreset, str] = {
    "default": "Conservative, preserves all detail",
    "balanced": "Moderate animation quantization, 24Hz resample",
    "aggressive": "Strong animation quantization, 15Hz resample (best for avatars)",
    "max": "Aggressive + supercompression + lower vertex precision",
}
