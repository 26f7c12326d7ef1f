"""
Pytest fixtures for glb-compress tests.

Documents are built in memory with the scene model; no sample files needed.
"""

from __future__ import annotations

import io
from collections.abc import Callable

import DracoPy
import numpy as np
import pytest
from PIL import Image as PILImage

from glb_compress import pipeline
from glb_compress.scene import Accessor, Document, Primitive, Semantic
from glb_compress.utils.glb import build_glb
from glb_compress.wasm import reset_gltfpack


def add_mesh(
    doc: Document,
    positions: list[list[float]],
    indices: list[int] | None,
    name: str = "mesh",
    **attributes: Accessor,
) -> Primitive:
    """Add a mesh with one primitive (and a node using it) to ``doc``."""
    mesh = doc.create_mesh(name)
    primitive = Primitive(
        attributes={Semantic.POSITION: Accessor(np.array(positions, dtype=np.float32), "VEC3")},
        indices=Accessor(np.array(indices, dtype=np.uint32)) if indices is not None else None,
    )
    for semantic, accessor in attributes.items():
        primitive.attributes[Semantic(semantic)] = accessor
    mesh.primitives.append(primitive)
    doc.create_node(name, mesh=mesh)
    return primitive


def png_bytes(width: int, height: int, color: tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", (width, height), color).save(buffer, "PNG")
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def reset_codecs(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test without cached gltfpack detection or env overrides."""
    for var in (
        "GLB_COMPRESS_GLTFPACK",
        "GLB_COMPRESS_GLTFPACK_TIMEOUT",
        "GLB_COMPRESS_FORCE_FALLBACK",
        "GLB_COMPRESS_DEBUG_DIR",
    ):
        monkeypatch.delenv(var, raising=False)
    pipeline.reset()
    reset_gltfpack()


@pytest.fixture
def triangle_doc() -> Document:
    """One clean triangle."""
    doc = Document()
    add_mesh(doc, [[0, 0, 0], [1, 0, 0], [0, 1, 0]], [0, 1, 2], name="triangle")
    return doc


@pytest.fixture
def coincident_doc() -> Document:
    """
    Two triangles sharing an edge through duplicated vertices.

    Vertex 3 sits on vertex 1 and vertex 4 on vertex 2; normals differ so
    bitwise welding leaves them alone.
    """
    doc = Document()
    normals = Accessor(
        np.array(
            [[0, 0, 1], [0, 0, 1], [0, 0, 1], [0, 1, 0], [0, 1, 0], [0, 0, 1]],
            dtype=np.float32,
        ),
        "VEC3",
    )
    add_mesh(
        doc,
        [[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0]],
        [0, 1, 2, 3, 5, 4],
        name="quad",
        NORMAL=normals,
    )
    return doc


@pytest.fixture
def make_skinned_doc() -> Callable[..., Document]:
    """Factory for a skinned triangle with configurable weights."""

    def build(weights: list[list[float]] | np.ndarray | None = None) -> Document:
        doc = Document()
        root = doc.create_node("root")
        bone = doc.create_node("bone", translation=[0.0, 1.0, 0.0])
        root.children.append(bone)
        weights_array = np.asarray(
            weights if weights is not None else [[1, 0, 0, 0]] * 3, dtype=np.float32
        )
        primitive = add_mesh(
            doc,
            [[0, 0, 0], [1, 0, 0], [0, 1, 0]],
            [0, 1, 2],
            name="body",
            JOINTS_0=Accessor(np.zeros((len(weights_array), 4), dtype=np.uint8), "VEC4"),
            WEIGHTS_0=Accessor(weights_array, "VEC4"),
        )
        skin = doc.create_skin("armature", joints=[root, bone])
        skin.inverse_bind_matrices = Accessor(
            np.tile(np.eye(4, dtype=np.float32).reshape(-1), 2), "MAT4"
        )
        doc.nodes[-1].skin = skin
        assert primitive.get_vertex_count() == len(weights_array)
        return doc

    return build


@pytest.fixture
def make_track() -> Callable[..., None]:
    """Factory adding a channel for ``node.path`` to an animation."""

    def add(
        animation,
        node,
        path: str,
        values: list[list[float]],
        times: list[float] | None = None,
        interpolation: str = "LINEAR",
    ) -> None:
        rows = np.asarray(values, dtype=np.float32)
        keyframes = len(times) if times is not None else len(rows)
        input_ = Accessor(
            np.asarray(times if times is not None else range(keyframes), dtype=np.float32)
        )
        element = {3: "VEC3", 4: "VEC4", 1: "SCALAR"}.get(rows.shape[1], "SCALAR")
        output = Accessor(rows, element)
        sampler = animation.create_sampler(input_, output, interpolation)
        animation.create_channel(sampler, node, path)

    return add


@pytest.fixture
def force_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip any gltfpack on PATH so the in-process codec runs."""
    monkeypatch.setenv("GLB_COMPRESS_FORCE_FALLBACK", "1")


@pytest.fixture
def build_mesh() -> Callable[..., Primitive]:
    """The :func:`add_mesh` helper, for tests that build their own documents."""
    return add_mesh


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    return png_bytes


def grid_mesh(doc: Document, cells: int, name: str = "grid") -> Primitive:
    """Add a flat ``cells`` x ``cells`` quad grid with UVs to ``doc``."""
    steps = np.linspace(0.0, 1.0, cells + 1, dtype=np.float32)
    u, v = np.meshgrid(steps, steps)
    uvs = np.stack([u.ravel(), v.ravel()], axis=1)
    positions = np.column_stack([uvs, np.zeros(len(uvs), dtype=np.float32)])

    row = cells + 1
    corner = (np.arange(cells)[:, None] * row + np.arange(cells)[None, :]).ravel()
    quads = np.stack(
        [corner, corner + 1, corner + row + 1, corner, corner + row + 1, corner + row], axis=1
    )
    return add_mesh(
        doc,
        positions.tolist(),
        quads.reshape(-1).tolist(),
        name=name,
        TEXCOORD_0=Accessor(uvs, "VEC2"),
    )


@pytest.fixture
def make_grid() -> Callable[..., Primitive]:
    return grid_mesh


def draco_glb(points: np.ndarray, faces: np.ndarray) -> bytes:
    """GLB with one Draco-compressed primitive holding POSITION and indices."""
    encoded = DracoPy.encode(
        np.asarray(points, dtype=np.float32), np.asarray(faces, dtype=np.uint32)
    )
    gltf = {
        "asset": {"version": "2.0"},
        "extensionsUsed": ["KHR_draco_mesh_compression"],
        "extensionsRequired": ["KHR_draco_mesh_compression"],
        "buffers": [{"byteLength": len(encoded)}],
        "bufferViews": [{"buffer": 0, "byteLength": len(encoded)}],
        "accessors": [
            {"componentType": 5126, "count": len(points), "type": "VEC3"},
            {"componentType": 5125, "count": int(np.size(faces)), "type": "SCALAR"},
        ],
        "meshes": [
            {
                "name": "packed",
                "primitives": [
                    {
                        "attributes": {"POSITION": 0},
                        "indices": 1,
                        "extensions": {
                            "KHR_draco_mesh_compression": {
                                "bufferView": 0,
                                "attributes": {"POSITION": 0},
                            }
                        },
                    }
                ],
            }
        ],
        "nodes": [{"mesh": 0}],
    }
    return build_glb(gltf, encoded)


@pytest.fixture
def make_draco_glb() -> Callable[..., bytes]:
    return draco_glb
