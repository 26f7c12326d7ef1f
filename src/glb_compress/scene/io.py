"""Read and write scene documents as GLB."""

from __future__ import annotations

from typing import Any

import DracoPy
import numpy as np

from glb_compress.errors import CompressedGeometryError, InvalidGlbError
from glb_compress.scene.model import (
    COMPONENT_DTYPES,
    ELEMENT_SIZES,
    TRIANGLES,
    Accessor,
    Animation,
    Document,
    Image,
    Mesh,
    Node,
    Primitive,
    Semantic,
    Skin,
)
from glb_compress.utils.glb import (
    build_glb,
    compression_extensions_in_use,
    decode_data_uri,
    is_glb,
    parse_glb,
    parse_gltf_json,
)

# bufferView targets
ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963

INSTANCING_EXTENSION = "EXT_mesh_gpu_instancing"
DRACO_EXTENSION = "KHR_draco_mesh_compression"

# Draco-compressed semantics and the decoded mesh field holding each
_DRACO_FIELDS = {
    "POSITION": "points",
    "NORMAL": "normals",
    "TEXCOORD_0": "tex_coord",
    "COLOR_0": "colors",
}

# Properties rebuilt from the model on write
_MODEL_KEYS = (
    "accessors",
    "bufferViews",
    "buffers",
    "meshes",
    "nodes",
    "skins",
    "animations",
    "images",
)


def read_binary(data: bytes) -> Document:
    """
    Load a document from GLB bytes (or JSON glTF with embedded buffers).

    Draco-compressed primitives are decoded while reading and the
    extension declaration is dropped.

    Raises:
        CompressedGeometryError: if geometry uses a codec other than Draco
            (meshopt buffers are decoded by gltfpack, not here).
        InvalidGlbError: if the data cannot be parsed.
    """
    if is_glb(data):
        gltf_json, binary = parse_glb(data)
    elif data[:64].lstrip()[:1] == b"{":
        gltf_json, binary = parse_gltf_json(data)
    else:
        raise InvalidGlbError("Invalid GLB file: magic bytes mismatch")

    compressed = sorted(compression_extensions_in_use(gltf_json) - {DRACO_EXTENSION})
    if compressed:
        raise CompressedGeometryError(
            f"Cannot decode compressed geometry in-process ({', '.join(compressed)})",
            compressed,
        )

    try:
        return _Reader(gltf_json, binary or b"").read()
    except (KeyError, IndexError, TypeError, ValueError) as e:
        if isinstance(e, InvalidGlbError):
            raise
        raise InvalidGlbError(f"Malformed glTF document: {e!r}") from e


def write_binary(doc: Document) -> bytes:
    """Serialize a document to GLB bytes."""
    return _Writer(doc).write()


class _Reader:
    def __init__(self, gltf_json: dict[str, Any], binary: bytes) -> None:
        self.json = gltf_json
        self.binary = binary
        self._accessors: dict[int, Accessor] = {}
        self._decoded_draco = False

    def read(self) -> Document:
        gltf = self.json
        doc = Document({k: v for k, v in gltf.items() if k not in _MODEL_KEYS})

        doc.images = [self._read_image(spec) for spec in gltf.get("images", [])]
        doc.meshes = [self._read_mesh(spec) for spec in gltf.get("meshes", [])]

        # Nodes first, references second: children may point forward
        doc.nodes = [_new_node(spec) for spec in gltf.get("nodes", [])]
        doc.skins = [
            Skin(
                name=spec.get("name"),
                joints=[_lookup(doc.nodes, j, "joint") for j in spec.get("joints", [])],
                inverse_bind_matrices=self._optional_accessor(spec.get("inverseBindMatrices")),
                skeleton=_lookup(doc.nodes, spec["skeleton"], "skeleton")
                if "skeleton" in spec
                else None,
                source=_strip(spec, "name", "joints", "inverseBindMatrices", "skeleton"),
            )
            for spec in gltf.get("skins", [])
        ]
        for node, spec in zip(doc.nodes, gltf.get("nodes", [])):
            node.children = [_lookup(doc.nodes, c, "child") for c in spec.get("children", [])]
            if "mesh" in spec:
                node.mesh = _lookup(doc.meshes, spec["mesh"], "mesh")
            if "skin" in spec:
                node.skin = _lookup(doc.skins, spec["skin"], "skin")
            instancing = spec.get("extensions", {}).get(INSTANCING_EXTENSION)
            if instancing:
                node.instancing = {
                    name: self._accessor(index)
                    for name, index in instancing.get("attributes", {}).items()
                }

        doc.animations = [
            self._read_animation(spec, doc.nodes) for spec in gltf.get("animations", [])
        ]
        if self._decoded_draco:
            doc.remove_extension(DRACO_EXTENSION)
        return doc

    # Accessors
    def _optional_accessor(self, index: int | None) -> Accessor | None:
        return None if index is None else self._accessor(index)

    def _accessor(self, index: int) -> Accessor:
        cached = self._accessors.get(index)
        if cached is None:
            cached = self._decode_accessor(_lookup(self.json.get("accessors", []), index, "accessor"))
            self._accessors[index] = cached
        return cached

    def _view(self, index: int) -> tuple[memoryview, int | None]:
        view = _lookup(self.json.get("bufferViews", []), index, "bufferView")
        start = view.get("byteOffset", 0)
        end = start + view["byteLength"]
        if end > len(self.binary):
            raise InvalidGlbError(f"bufferView {index} exceeds the binary chunk")
        return memoryview(self.binary)[start:end], view.get("byteStride")

    def _decode_accessor(self, spec: dict[str, Any]) -> Accessor:
        dtype = COMPONENT_DTYPES.get(spec["componentType"])
        size = ELEMENT_SIZES.get(spec["type"])
        if dtype is None or size is None:
            raise InvalidGlbError(
                f"Unsupported accessor layout {spec['type']}/{spec['componentType']}"
            )
        count = spec["count"]

        if "bufferView" in spec:
            data, stride = self._view(spec["bufferView"])
            array = _read_elements(data, spec.get("byteOffset", 0), stride, dtype, size, count)
        else:
            array = np.zeros(count * size, dtype=dtype)

        sparse = spec.get("sparse")
        if sparse:
            array = array.copy()
            n = sparse["count"]
            idx_spec = sparse["indices"]
            idx_dtype = COMPONENT_DTYPES[idx_spec["componentType"]]
            idx_data, _ = self._view(idx_spec["bufferView"])
            rows = _read_elements(idx_data, idx_spec.get("byteOffset", 0), None, idx_dtype, 1, n)
            val_spec = sparse["values"]
            val_data, _ = self._view(val_spec["bufferView"])
            values = _read_elements(val_data, val_spec.get("byteOffset", 0), None, dtype, size, n)
            if n and int(rows.max()) >= count:
                raise InvalidGlbError("Sparse accessor index out of range")
            array.reshape(-1, size)[rows.astype(np.intp)] = values.reshape(-1, size)

        return Accessor(
            array,
            spec["type"],
            normalized=bool(spec.get("normalized", False)),
            name=spec.get("name"),
        )

    # Meshes
    def _read_mesh(self, spec: dict[str, Any]) -> Mesh:
        return Mesh(
            name=spec.get("name"),
            primitives=[self._read_primitive(p) for p in spec.get("primitives", [])],
            weights=list(spec["weights"]) if "weights" in spec else None,
            source=_strip(spec, "name", "primitives", "weights"),
        )

    def _read_primitive(self, spec: dict[str, Any]) -> Primitive:
        primitive = Primitive(
            mode=spec.get("mode", TRIANGLES),
            material=spec.get("material"),
            source=_strip(spec, "attributes", "indices", "mode", "material", "targets"),
        )
        draco = spec.get("extensions", {}).get(DRACO_EXTENSION)
        if draco is not None:
            attributes, indices = self._decode_draco(spec, draco)
            extensions = _strip(primitive.source["extensions"], DRACO_EXTENSION)
            if extensions:
                primitive.source["extensions"] = extensions
            else:
                del primitive.source["extensions"]
            self._decoded_draco = True
        else:
            attributes = {
                name: self._accessor(index) for name, index in spec.get("attributes", {}).items()
            }
            indices = self._accessor(spec["indices"]) if "indices" in spec else None

        for name, accessor in attributes.items():
            semantic = Semantic.parse(name)
            if semantic is not None:
                primitive.attributes[semantic] = accessor
            else:
                primitive.custom_attributes[name] = accessor
        primitive.targets = [
            {name: self._accessor(index) for name, index in target.items()}
            for target in spec.get("targets", [])
        ]
        primitive.indices = indices

        counts = {a.get_count() for a in primitive.vertex_accessors()}
        if len(counts) > 1:
            raise InvalidGlbError(f"Primitive attributes disagree on vertex count: {sorted(counts)}")
        if primitive.indices is not None and primitive.indices.get_count():
            vertex_count = counts.pop() if counts else 0
            if int(primitive.indices.get_array().max()) >= vertex_count:
                raise InvalidGlbError("Primitive index out of range of its vertices")
        return primitive

    def _decode_draco(
        self, spec: dict[str, Any], draco: dict[str, Any]
    ) -> tuple[dict[str, Accessor], Accessor | None]:
        """Decode a Draco-compressed primitive into attribute and index accessors."""
        compressed = draco.get("attributes", {})
        names = set(spec.get("attributes", {}))
        unsupported = sorted(names - set(_DRACO_FIELDS))
        if unsupported or names != set(compressed) or spec.get("targets"):
            raise InvalidGlbError(
                "Cannot decode Draco primitive with attributes "
                + ", ".join(sorted(names | set(compressed)))
            )

        data, _ = self._view(draco["bufferView"])
        try:
            mesh = DracoPy.decode(bytes(data))
        except (DracoPy.FileTypeException, ValueError, RuntimeError) as e:
            raise InvalidGlbError(f"Failed to decode Draco geometry: {e}") from e

        accessors = self.json.get("accessors", [])
        attributes: dict[str, Accessor] = {}
        for name, index in spec["attributes"].items():
            values = getattr(mesh, _DRACO_FIELDS[name], None)
            if values is None or len(values) == 0:
                raise InvalidGlbError(f"Draco geometry has no {name} data")
            attributes[name] = _decoded_accessor(
                np.asarray(values), _lookup(accessors, index, "accessor")
            )

        indices = None
        # Point clouds decode without faces
        faces = getattr(mesh, "faces", None)
        if "indices" in spec and faces is not None and len(faces):
            indices = Accessor(np.asarray(faces).reshape(-1).astype(np.uint32))
        return attributes, indices

    # Animations
    def _read_animation(self, spec: dict[str, Any], nodes: list[Node]) -> Animation:
        animation = Animation(
            name=spec.get("name"), source=_strip(spec, "name", "channels", "samplers")
        )
        samplers = []
        for s in spec.get("samplers", []):
            sampler = animation.create_sampler(
                self._accessor(s["input"]),
                self._accessor(s["output"]),
                s.get("interpolation", "LINEAR"),
            )
            sampler.source = _strip(s, "input", "output", "interpolation")
            samplers.append(sampler)
        for c in spec.get("channels", []):
            target = c.get("target", {})
            node = _lookup(nodes, target["node"], "node") if "node" in target else None
            channel = animation.create_channel(
                _lookup(samplers, c["sampler"], "sampler"), node, target.get("path", "")
            )
            channel.source = _strip(c, "sampler", "target")
            extra_target = _strip(target, "node", "path")
            if extra_target:
                channel.source["target"] = extra_target
        return animation

    def _read_image(self, spec: dict[str, Any]) -> Image:
        image = Image(
            name=spec.get("name"),
            mime_type=spec.get("mimeType"),
            source=_strip(spec, "name", "mimeType", "bufferView", "uri"),
        )
        if "bufferView" in spec:
            data, _ = self._view(spec["bufferView"])
            image.data = bytes(data)
        elif isinstance(spec.get("uri"), str) and spec["uri"].startswith("data:"):
            image.data = decode_data_uri(spec["uri"])
            if image.mime_type is None:
                image.mime_type = spec["uri"][5:].split(";", 1)[0] or None
        else:
            image.uri = spec.get("uri")
        return image


def _read_elements(
    data: memoryview,
    offset: int,
    stride: int | None,
    dtype: np.dtype,
    size: int,
    count: int,
) -> np.ndarray:
    """Copy ``count`` elements out of a (possibly interleaved) buffer view."""
    element_bytes = dtype.itemsize * size
    stride = stride or element_bytes
    if count == 0:
        return np.zeros(0, dtype=dtype)
    needed = offset + stride * (count - 1) + element_bytes
    if needed > len(data):
        raise InvalidGlbError("Accessor reads past the end of its bufferView")
    raw = np.frombuffer(data, dtype=np.uint8)
    if stride == element_bytes:
        return raw[offset : offset + count * element_bytes].copy().view(dtype)
    rows = np.lib.stride_tricks.as_strided(
        raw[offset:], shape=(count, element_bytes), strides=(stride, 1)
    )
    return np.ascontiguousarray(rows).view(dtype).reshape(-1)


def _decoded_accessor(values: np.ndarray, spec: dict[str, Any]) -> Accessor:
    """Wrap decoded values using the layout the accessor declares."""
    dtype = COMPONENT_DTYPES.get(spec["componentType"])
    if dtype is None or spec["type"] not in ELEMENT_SIZES:
        raise InvalidGlbError(
            f"Unsupported accessor layout {spec['type']}/{spec['componentType']}"
        )
    size = ELEMENT_SIZES[spec["type"]]
    if values.ndim != 2 or values.shape[1] != size:
        raise InvalidGlbError(
            f"Draco attribute has {values.shape[-1]} components, accessor expects {size}"
        )
    if values.dtype == np.uint8 and np.dtype(dtype).kind == "f":
        values = values / 255.0
    return Accessor(
        values.astype(dtype).reshape(-1),
        spec["type"],
        normalized=bool(spec.get("normalized", False)),
        name=spec.get("name"),
    )


def _new_node(spec: dict[str, Any]) -> Node:
    source = _strip(
        spec, "name", "translation", "rotation", "scale", "matrix", "weights",
        "mesh", "skin", "children",
    )  # fmt: skip
    extensions = source.get("extensions")
    if extensions and INSTANCING_EXTENSION in extensions:
        extensions = dict(extensions)
        instancing = dict(extensions[INSTANCING_EXTENSION])
        instancing.pop("attributes", None)
        extensions[INSTANCING_EXTENSION] = instancing
        source["extensions"] = extensions
    return Node(
        name=spec.get("name"),
        translation=_floats(spec.get("translation")),
        rotation=_floats(spec.get("rotation")),
        scale=_floats(spec.get("scale")),
        matrix=_floats(spec.get("matrix")),
        weights=_floats(spec.get("weights")),
        source=source,
    )


def _floats(values: list[float] | None) -> list[float] | None:
    return None if values is None else [float(v) for v in values]


def _strip(spec: dict[str, Any], *keys: str) -> dict[str, Any]:
    return {k: v for k, v in spec.items() if k not in keys}


def _lookup(items: list[Any], index: Any, kind: str) -> Any:
    if not isinstance(index, int) or not 0 <= index < len(items):
        raise InvalidGlbError(f"Reference to missing {kind} {index!r}")
    return items[index]


class _Writer:
    def __init__(self, doc: Document) -> None:
        self.doc = doc
        self.binary = bytearray()
        self.views: list[dict[str, Any]] = []
        self.accessors: list[dict[str, Any]] = []
        # (accessor id, bufferView target) -> accessor index
        self._written: dict[tuple[int, int | None], int] = {}

    def write(self) -> bytes:
        doc = self.doc
        gltf = {k: v for k, v in doc.json.items() if k not in _MODEL_KEYS}

        node_index = {id(n): i for i, n in enumerate(doc.nodes)}
        mesh_index = {id(m): i for i, m in enumerate(doc.meshes)}
        skin_index = {id(s): i for i, s in enumerate(doc.skins)}

        if doc.meshes:
            gltf["meshes"] = [self._mesh(m) for m in doc.meshes]
        if doc.nodes:
            gltf["nodes"] = [
                self._node(n, node_index, mesh_index, skin_index) for n in doc.nodes
            ]
        if doc.skins:
            gltf["skins"] = [self._skin(s, node_index) for s in doc.skins]
        animations = [
            self._animation(a, node_index) for a in doc.animations if a.channels
        ]
        if animations:
            gltf["animations"] = animations
        if doc.images:
            gltf["images"] = [self._image(img) for img in doc.images]

        if self.accessors:
            gltf["accessors"] = self.accessors
        if self.views:
            gltf["bufferViews"] = self.views
        if self.binary:
            gltf["buffers"] = [{"byteLength": len(self.binary)}]
        return build_glb(gltf, bytes(self.binary))

    def _append(self, data: bytes, target: int | None = None, stride: int | None = None) -> int:
        self.binary.extend(b"\x00" * (-len(self.binary) % 4))
        view: dict[str, Any] = {
            "buffer": 0,
            "byteOffset": len(self.binary),
            "byteLength": len(data),
        }
        if stride is not None:
            view["byteStride"] = stride
        if target is not None:
            view["target"] = target
        self.binary.extend(data)
        self.views.append(view)
        return len(self.views) - 1

    def _accessor(self, accessor: Accessor, target: int | None = None) -> int:
        """
        Write an accessor once per bufferView target.

        An accessor referenced both as indices and as vertex data gets one
        copy per usage: index views carry no stride or ARRAY_BUFFER target.
        """
        key = (id(accessor), target)
        written = self._written.get(key)
        if written is not None:
            return written

        elements = accessor.get_elements()
        dtype = COMPONENT_DTYPES[accessor.component_type]
        raw = np.ascontiguousarray(elements, dtype=dtype)
        stride = None
        element_bytes = dtype.itemsize * accessor.get_element_size()
        if target == ARRAY_BUFFER and element_bytes % 4:
            # Vertex attribute elements must start on 4-byte boundaries
            stride = element_bytes + (-element_bytes % 4)
            padded = np.zeros((len(raw), stride), dtype=np.uint8)
            padded[:, :element_bytes] = raw.view(np.uint8).reshape(len(raw), element_bytes)
            data = padded.tobytes()
        else:
            data = raw.tobytes()

        spec: dict[str, Any] = {
            "bufferView": self._append(data, target, stride),
            "componentType": accessor.component_type,
            "count": accessor.get_count(),
            "type": accessor.type,
        }
        if accessor.normalized:
            spec["normalized"] = True
        if accessor.name:
            spec["name"] = accessor.name
        if len(elements) and (elements.dtype.kind != "f" or np.isfinite(elements).all()):
            spec["min"] = elements.min(axis=0).tolist()
            spec["max"] = elements.max(axis=0).tolist()

        self.accessors.append(spec)
        self._written[key] = len(self.accessors) - 1
        return len(self.accessors) - 1

    def _mesh(self, mesh: Mesh) -> dict[str, Any]:
        spec = dict(mesh.source)
        if mesh.name is not None:
            spec["name"] = mesh.name
        if mesh.weights is not None:
            spec["weights"] = [float(w) for w in mesh.weights]
        spec["primitives"] = [self._primitive(p) for p in mesh.primitives]
        return spec

    def _primitive(self, primitive: Primitive) -> dict[str, Any]:
        spec = dict(primitive.source)
        attributes = {
            semantic.value: self._accessor(accessor, ARRAY_BUFFER)
            for semantic, accessor in primitive.attributes.items()
        }
        attributes.update(
            (name, self._accessor(accessor, ARRAY_BUFFER))
            for name, accessor in primitive.custom_attributes.items()
        )
        spec["attributes"] = attributes
        if primitive.indices is not None:
            spec["indices"] = self._accessor(primitive.indices, ELEMENT_ARRAY_BUFFER)
        if primitive.mode != TRIANGLES:
            spec["mode"] = primitive.mode
        if primitive.material is not None:
            spec["material"] = primitive.material
        if primitive.targets:
            spec["targets"] = [
                {name: self._accessor(a, ARRAY_BUFFER) for name, a in target.items()}
                for target in primitive.targets
            ]
        return spec

    def _node(
        self,
        node: Node,
        node_index: dict[int, int],
        mesh_index: dict[int, int],
        skin_index: dict[int, int],
    ) -> dict[str, Any]:
        spec = dict(node.source)
        if node.name is not None:
            spec["name"] = node.name
        for key in ("translation", "rotation", "scale", "matrix", "weights"):
            value = getattr(node, key)
            if value is not None:
                spec[key] = [float(v) for v in value]
        if node.children:
            spec["children"] = [node_index[id(c)] for c in node.children]
        if node.mesh is not None:
            spec["mesh"] = mesh_index[id(node.mesh)]
        if node.skin is not None:
            spec["skin"] = skin_index[id(node.skin)]
        if node.instancing:
            extensions = dict(spec.get("extensions", {}))
            instancing = dict(extensions.get(INSTANCING_EXTENSION, {}))
            instancing["attributes"] = {
                name: self._accessor(a) for name, a in node.instancing.items()
            }
            extensions[INSTANCING_EXTENSION] = instancing
            spec["extensions"] = extensions
        return spec

    def _skin(self, skin: Skin, node_index: dict[int, int]) -> dict[str, Any]:
        spec = dict(skin.source)
        if skin.name is not None:
            spec["name"] = skin.name
        spec["joints"] = [node_index[id(j)] for j in skin.joints]
        if skin.inverse_bind_matrices is not None:
            spec["inverseBindMatrices"] = self._accessor(skin.inverse_bind_matrices)
        if skin.skeleton is not None:
            spec["skeleton"] = node_index[id(skin.skeleton)]
        return spec

    def _animation(self, animation: Animation, node_index: dict[int, int]) -> dict[str, Any]:
        spec = dict(animation.source)
        if animation.name is not None:
            spec["name"] = animation.name
        sampler_index = {id(s): i for i, s in enumerate(animation.samplers)}
        spec["samplers"] = [
            {
                **s.source,
                "input": self._accessor(s.input),
                "output": self._accessor(s.output),
                "interpolation": s.interpolation,
            }
            for s in animation.samplers
        ]
        channels = []
        for channel in animation.channels:
            assert channel.sampler is not None, "live channel without sampler"
            target = dict(channel.source.get("target", {}))
            target["path"] = channel.target_path
            if channel.target_node is not None:
                target["node"] = node_index[id(channel.target_node)]
            channels.append(
                {
                    **{k: v for k, v in channel.source.items() if k != "target"},
                    "sampler": sampler_index[id(channel.sampler)],
                    "target": target,
                }
            )
        spec["channels"] = channels
        return spec

    def _image(self, image: Image) -> dict[str, Any]:
        spec = dict(image.source)
        if image.name is not None:
            spec["name"] = image.name
        if image.data is not None:
            spec["bufferView"] = self._append(image.data)
            spec["mimeType"] = image.mime_type or "image/png"
        elif image.uri is not None:
            spec["uri"] = image.uri
            if image.mime_type:
                spec["mimeType"] = image.mime_type
        return spec
