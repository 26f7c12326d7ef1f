"""In-memory scene document: nodes, meshes, accessors, skins and animations.

The model is deliberately small. It covers the parts of a glTF document that
transforms rewrite (vertex/index buffers, keyframes, skins) and carries every
other JSON property through untouched in ``source`` dicts.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

import numpy as np

# glTF component types
BYTE = 5120
UNSIGNED_BYTE = 5121
SHORT = 5122
UNSIGNED_SHORT = 5123
UNSIGNED_INT = 5125
FLOAT = 5126

COMPONENT_DTYPES: dict[int, np.dtype] = {
    BYTE: np.dtype("<i1"),
    UNSIGNED_BYTE: np.dtype("<u1"),
    SHORT: np.dtype("<i2"),
    UNSIGNED_SHORT: np.dtype("<u2"),
    UNSIGNED_INT: np.dtype("<u4"),
    FLOAT: np.dtype("<f4"),
}

_DTYPE_COMPONENTS: dict[str, int] = {
    dtype.str.lstrip("<>|"): component for component, dtype in COMPONENT_DTYPES.items()
}

ELEMENT_SIZES: dict[str, int] = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}

# Primitive topology modes
POINTS = 0
LINES = 1
TRIANGLES = 4

TargetPath = Literal["translation", "rotation", "scale", "weights"]
TARGET_PATHS: tuple[str, ...] = ("translation", "rotation", "scale", "weights")

Interpolation = Literal["LINEAR", "STEP", "CUBICSPLINE"]


class Semantic(str, Enum):
    """Vertex attribute semantics understood by the transforms."""

    POSITION = "POSITION"
    NORMAL = "NORMAL"
    TANGENT = "TANGENT"
    TEXCOORD_0 = "TEXCOORD_0"
    TEXCOORD_1 = "TEXCOORD_1"
    TEXCOORD_2 = "TEXCOORD_2"
    TEXCOORD_3 = "TEXCOORD_3"
    COLOR_0 = "COLOR_0"
    COLOR_1 = "COLOR_1"
    JOINTS_0 = "JOINTS_0"
    JOINTS_1 = "JOINTS_1"
    WEIGHTS_0 = "WEIGHTS_0"
    WEIGHTS_1 = "WEIGHTS_1"

    @classmethod
    def parse(cls, name: str) -> Semantic | None:
        """Return the semantic for an attribute name, or None if unknown."""
        try:
            return cls(name)
        except ValueError:
            return None

    @property
    def texcoord_set(self) -> int | None:
        """UV set number for ``TEXCOORD_N`` semantics."""
        if self.value.startswith("TEXCOORD_"):
            return int(self.value[len("TEXCOORD_") :])
        return None


def component_type_for(dtype: np.dtype) -> int:
    """Map a numpy dtype to its glTF component type."""
    key = np.dtype(dtype).str.lstrip("<>|")
    try:
        return _DTYPE_COMPONENTS[key]
    except KeyError:
        raise TypeError(f"No glTF component type for dtype {dtype}") from None


def _coerce(array: np.ndarray) -> np.ndarray:
    """Flatten and narrow an array to a dtype glTF can store."""
    flat = np.ascontiguousarray(array).reshape(-1)
    if flat.dtype.kind == "f" and flat.dtype != np.float32:
        return flat.astype(np.float32)
    if flat.dtype.kind in "iu" and flat.dtype.str.lstrip("<>|") not in _DTYPE_COMPONENTS:
        assert flat.size == 0 or flat.min() >= 0, "negative values need an explicit dtype"
        return flat.astype(np.uint32)
    if flat.dtype.kind == "b":
        return flat.astype(np.uint8)
    return flat


class Accessor:
    """A typed, flat array of per-vertex or per-keyframe values."""

    def __init__(
        self,
        array: np.ndarray | list[float] | list[int],
        type: str = "SCALAR",
        *,
        normalized: bool = False,
        name: str | None = None,
    ) -> None:
        assert type in ELEMENT_SIZES, f"unknown accessor type {type}"
        self.type = type
        self.normalized = normalized
        self.name = name
        self._array = np.empty(0, dtype=np.float32)
        self.component_type = FLOAT
        self.set_array(np.asarray(array))

    def __repr__(self) -> str:
        return (
            f"Accessor(type={self.type}, count={self.get_count()}, "
            f"dtype={self._array.dtype})"
        )

    def get_array(self) -> np.ndarray:
        """Flat view of the accessor data."""
        return self._array

    def set_array(self, array: np.ndarray) -> None:
        """Replace the data; the component type follows the array dtype."""
        flat = _coerce(np.asarray(array))
        size = ELEMENT_SIZES[self.type]
        assert flat.size % size == 0, (
            f"array length {flat.size} is not a multiple of element size {size}"
        )
        self._array = flat
        self.component_type = component_type_for(flat.dtype)

    def get_element_size(self) -> int:
        """Number of components per element."""
        return ELEMENT_SIZES[self.type]

    def get_count(self) -> int:
        """Number of elements."""
        return self._array.size // self.get_element_size()

    def get_elements(self) -> np.ndarray:
        """Data reshaped to ``(count, element_size)``."""
        return self._array.reshape(-1, self.get_element_size())

    def get_float_elements(self) -> np.ndarray:
        """Elements as float64, decoding normalized integers to [0, 1] / [-1, 1]."""
        elements = self.get_elements()
        if self.normalized and elements.dtype.kind in "iu":
            info = np.iinfo(elements.dtype)
            scaled = elements.astype(np.float64) / info.max
            return np.maximum(scaled, -1.0)
        return elements.astype(np.float64)

    def clone(self) -> Accessor:
        """Deep copy with its own buffer."""
        return Accessor(
            self._array.copy(), self.type, normalized=self.normalized, name=self.name
        )

    def content_key(self) -> tuple[str, int, bool, bytes]:
        """Identity of the accessor contents, used for deduplication."""
        return (self.type, self.component_type, self.normalized, self._array.tobytes())


@dataclass(eq=False)
class Primitive:
    """One drawable geometry unit: index buffer plus vertex attributes."""

    attributes: dict[Semantic, Accessor] = field(default_factory=dict)
    indices: Accessor | None = None
    mode: int = TRIANGLES
    material: int | None = None
    # Application-specific attributes (names starting with "_")
    custom_attributes: dict[str, Accessor] = field(default_factory=dict)
    # Morph targets: attribute name -> displacement accessor
    targets: list[dict[str, Accessor]] = field(default_factory=list)
    source: dict[str, Any] = field(default_factory=dict)

    def list_semantics(self) -> list[Semantic]:
        """Typed semantics present on this primitive."""
        return list(self.attributes)

    def get_attribute(self, semantic: Semantic) -> Accessor | None:
        return self.attributes.get(semantic)

    def set_attribute(self, semantic: Semantic, accessor: Accessor | None) -> None:
        """Set or, with None, remove an attribute."""
        if accessor is None:
            self.attributes.pop(semantic, None)
        else:
            self.attributes[semantic] = accessor

    def get_indices(self) -> Accessor | None:
        return self.indices

    def get_vertex_count(self) -> int:
        position = self.attributes.get(Semantic.POSITION)
        if position is not None:
            return position.get_count()
        for accessor in self.vertex_accessors():
            return accessor.get_count()
        return 0

    def vertex_accessors(self) -> list[Accessor]:
        """Every per-vertex accessor: attributes, custom attributes and morph targets."""
        accessors = list(self.attributes.values())
        accessors.extend(self.custom_attributes.values())
        for target in self.targets:
            accessors.extend(target.values())
        return accessors

    def referenced_accessors(self) -> list[Accessor]:
        """Vertex accessors plus the index accessor."""
        accessors = self.vertex_accessors()
        if self.indices is not None:
            accessors.append(self.indices)
        return accessors

    def swap_accessor(self, old: Accessor, new: Accessor) -> None:
        """Replace the first reference to ``old`` in this primitive."""
        if self.indices is old:
            self.indices = new
            return
        tables: list[dict[Any, Accessor]] = [self.attributes, self.custom_attributes]
        tables.extend(self.targets)
        for table in tables:
            for key, accessor in table.items():
                if accessor is old:
                    table[key] = new
                    return
        raise KeyError("accessor not referenced by primitive")

    def rebuild(self, remap: np.ndarray, new_to_old: np.ndarray) -> None:
        """
        Renumber vertices.

        ``remap[old_index]`` is the new index of each original vertex and
        ``new_to_old[new_index]`` the original vertex kept in each new slot.
        Every vertex accessor is gathered and the index buffer remapped.
        """
        vertex_count = len(new_to_old)
        if self.indices is not None:
            indices = self.indices.get_array()
            new_indices = remap[indices].astype(np.uint32)
            assert new_indices.size == 0 or int(new_indices.max()) < vertex_count, (
                "remapped index out of range"
            )
            self.indices.set_array(new_indices)
        for accessor in self.vertex_accessors():
            elements = accessor.get_elements()
            assert len(elements) == len(remap), "attribute length mismatch"
            accessor.set_array(elements[new_to_old])


@dataclass(eq=False)
class Mesh:
    name: str | None = None
    primitives: list[Primitive] = field(default_factory=list)
    weights: list[float] | None = None
    source: dict[str, Any] = field(default_factory=dict)

    def list_primitives(self) -> list[Primitive]:
        return list(self.primitives)

    def get_weights(self) -> list[float]:
        return list(self.weights or [])


@dataclass(eq=False)
class Node:
    """Scene node with a rest-pose transform."""

    name: str | None = None
    translation: list[float] | None = None
    rotation: list[float] | None = None
    scale: list[float] | None = None
    matrix: list[float] | None = None
    weights: list[float] | None = None
    mesh: Mesh | None = None
    skin: Skin | None = None
    children: list[Node] = field(default_factory=list)
    # EXT_mesh_gpu_instancing attributes
    instancing: dict[str, Accessor] = field(default_factory=dict)
    source: dict[str, Any] = field(default_factory=dict)

    def get_translation(self) -> list[float]:
        return list(self.translation) if self.translation is not None else [0.0, 0.0, 0.0]

    def get_rotation(self) -> list[float]:
        return list(self.rotation) if self.rotation is not None else [0.0, 0.0, 0.0, 1.0]

    def get_scale(self) -> list[float]:
        return list(self.scale) if self.scale is not None else [1.0, 1.0, 1.0]

    def get_mesh(self) -> Mesh | None:
        return self.mesh

    def get_rest_value(self, path: str) -> list[float] | None:
        """Rest-pose value for an animation target path."""
        if path == "translation":
            return self.get_translation()
        if path == "rotation":
            return self.get_rotation()
        if path == "scale":
            return self.get_scale()
        if path == "weights":
            # Node weights override the mesh defaults for this instance
            if self.weights is not None:
                return list(self.weights)
            if self.mesh is not None:
                return self.mesh.get_weights()
        return None


@dataclass(eq=False)
class Skin:
    name: str | None = None
    joints: list[Node] = field(default_factory=list)
    inverse_bind_matrices: Accessor | None = None
    skeleton: Node | None = None
    source: dict[str, Any] = field(default_factory=dict)


class Sampler:
    """Keyframe curve: input times and output values. Owned by one animation."""

    def __init__(
        self,
        animation: Animation,
        input: Accessor,
        output: Accessor,
        interpolation: str = "LINEAR",
    ) -> None:
        self.animation: Animation | None = animation
        self.input = input
        self.output = output
        self.interpolation = interpolation
        self.source: dict[str, Any] = {}
        self._ref_count = 0

    def get_input(self) -> Accessor:
        return self.input

    def get_output(self) -> Accessor:
        return self.output

    @property
    def ref_count(self) -> int:
        """Number of live channels referencing this sampler."""
        return self._ref_count

    def list_parents(self) -> list[Channel]:
        """Channels that reference this sampler."""
        if self.animation is None:
            return []
        return [c for c in self.animation.channels if c.sampler is self]

    def keyframe_stride(self) -> int:
        """Output components per keyframe (includes tangents for cubic splines)."""
        keyframes = self.input.get_count()
        if keyframes == 0:
            return 0
        total = self.output.get_array().size
        assert total % keyframes == 0, "sampler output does not match its input"
        return total // keyframes

    def dispose(self) -> None:
        """Remove the sampler from its animation; no channel may still use it."""
        assert self._ref_count == 0, "sampler still referenced by a channel"
        if self.animation is not None:
            self.animation.samplers.remove(self)
            self.animation = None


class Channel:
    """Binds a sampler to one node property."""

    def __init__(
        self,
        animation: Animation,
        sampler: Sampler,
        target_node: Node | None,
        target_path: str,
    ) -> None:
        assert sampler.animation is animation, "sampler belongs to another animation"
        self.animation: Animation | None = animation
        self.sampler: Sampler | None = sampler
        self.target_node = target_node
        self.target_path = target_path
        self.source: dict[str, Any] = {}
        sampler._ref_count += 1

    def get_sampler(self) -> Sampler | None:
        return self.sampler

    def get_target_node(self) -> Node | None:
        return self.target_node

    def get_target_path(self) -> str:
        return self.target_path

    def dispose(self) -> None:
        """Detach from the animation and release the sampler reference."""
        assert self.animation is not None, "channel already disposed"
        self.animation.channels.remove(self)
        if self.sampler is not None:
            self.sampler._ref_count -= 1
        self.animation = None
        self.sampler = None


@dataclass(eq=False)
class Animation:
    name: str | None = None
    channels: list[Channel] = field(default_factory=list)
    samplers: list[Sampler] = field(default_factory=list)
    source: dict[str, Any] = field(default_factory=dict)

    def list_channels(self) -> list[Channel]:
        return list(self.channels)

    def list_samplers(self) -> list[Sampler]:
        return list(self.samplers)

    def create_sampler(
        self, input: Accessor, output: Accessor, interpolation: str = "LINEAR"
    ) -> Sampler:
        sampler = Sampler(self, input, output, interpolation)
        self.samplers.append(sampler)
        return sampler

    def create_channel(
        self, sampler: Sampler, target_node: Node | None, target_path: str
    ) -> Channel:
        channel = Channel(self, sampler, target_node, target_path)
        self.channels.append(channel)
        return channel


@dataclass(eq=False)
class Image:
    name: str | None = None
    mime_type: str | None = None
    data: bytes | None = None
    uri: str | None = None
    source: dict[str, Any] = field(default_factory=dict)


class Document:
    """A loaded scene: owns nodes, meshes, skins, animations and images.

    ``json`` keeps the document's JSON for everything the model does not
    represent (materials, textures, scenes, cameras, extensions).
    """

    def __init__(self, json: dict[str, Any] | None = None) -> None:
        self.json: dict[str, Any] = json if json is not None else {"asset": {"version": "2.0"}}
        self.nodes: list[Node] = []
        self.meshes: list[Mesh] = []
        self.skins: list[Skin] = []
        self.animations: list[Animation] = []
        self.images: list[Image] = []

    def list_nodes(self) -> list[Node]:
        return list(self.nodes)

    def list_meshes(self) -> list[Mesh]:
        return list(self.meshes)

    def list_skins(self) -> list[Skin]:
        return list(self.skins)

    def list_animations(self) -> list[Animation]:
        return list(self.animations)

    def list_materials(self) -> list[dict[str, Any]]:
        return list(self.json.get("materials", []))

    def list_textures(self) -> list[dict[str, Any]]:
        return list(self.json.get("textures", []))

    @property
    def has_skins(self) -> bool:
        return len(self.skins) > 0

    def create_node(self, name: str | None = None, **kwargs: Any) -> Node:
        node = Node(name=name, **kwargs)
        self.nodes.append(node)
        return node

    def create_mesh(self, name: str | None = None) -> Mesh:
        mesh = Mesh(name=name)
        self.meshes.append(mesh)
        return mesh

    def create_animation(self, name: str | None = None) -> Animation:
        animation = Animation(name=name)
        self.animations.append(animation)
        return animation

    def create_skin(self, name: str | None = None, joints: list[Node] | None = None) -> Skin:
        skin = Skin(name=name, joints=list(joints or []))
        self.skins.append(skin)
        return skin

    def iter_primitives(self) -> Iterator[tuple[Mesh, Primitive]]:
        for mesh in self.meshes:
            for primitive in mesh.primitives:
                yield mesh, primitive

    def accessor_usage(self) -> Counter[int]:
        """Reference count of every accessor, keyed by ``id()``."""
        usage: Counter[int] = Counter()
        for _, primitive in self.iter_primitives():
            usage.update(id(a) for a in primitive.referenced_accessors())
        for animation in self.animations:
            for sampler in animation.samplers:
                usage[id(sampler.input)] += 1
                usage[id(sampler.output)] += 1
        for skin in self.skins:
            if skin.inverse_bind_matrices is not None:
                usage[id(skin.inverse_bind_matrices)] += 1
        for node in self.nodes:
            usage.update(id(a) for a in node.instancing.values())
        return usage

    def detach_shared(self, primitive: Primitive, usage: Counter[int] | None = None) -> int:
        """
        Give ``primitive`` private copies of any accessor it shares.

        Must run before rewriting a primitive's buffers in place.
        Returns the number of accessors cloned.
        """
        if usage is None:
            usage = self.accessor_usage()
        cloned = 0
        for accessor in primitive.referenced_accessors():
            if usage[id(accessor)] > 1:
                copy = accessor.clone()
                primitive.swap_accessor(accessor, copy)
                usage[id(accessor)] -= 1
                usage[id(copy)] = 1
                cloned += 1
        return cloned

    def remove_mesh(self, mesh: Mesh) -> None:
        """Drop a mesh and clear node references to it."""
        for node in self.nodes:
            if node.mesh is mesh:
                node.mesh = None
        self.meshes.remove(mesh)

    def declare_extension(self, name: str, required: bool = False) -> None:
        used: list[str] = self.json.setdefault("extensionsUsed", [])
        if name not in used:
            used.append(name)
        if required:
            req: list[str] = self.json.setdefault("extensionsRequired", [])
            if name not in req:
                req.append(name)

    def remove_extension(self, name: str) -> bool:
        """Remove an extension declaration; returns True if it was declared."""
        removed = False
        for key in ("extensionsUsed", "extensionsRequired"):
            names = self.json.get(key)
            if names and name in names:
                names.remove(name)
                removed = True
                if not names:
                    del self.json[key]
        return removed
