"""Document-wide cleanup stages: accessor dedup, pruning and welding."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from glb_compress.cleaners.geometry import first_seen_remap
from glb_compress.scene.model import Accessor, Document
from glb_compress.utils.constants import COMPRESSION_EXTENSIONS


def strip_compression_extensions(doc: Document) -> list[str]:
    """Drop stale mesh compression extension declarations; returns those removed."""
    return [name for name in COMPRESSION_EXTENSIONS if doc.remove_extension(name)]


def dedup(doc: Document) -> int:
    """
    Share accessors with identical contents.

    Accessors are only shared within one usage (index buffers, vertex
    attributes, other data) since each usage needs its own bufferView layout.
    Returns the number of redundant accessors dropped.
    """
    canonical: dict[tuple[str, tuple[str, int, bool, bytes]], Accessor] = {}
    replaced: set[int] = set()

    def resolve(accessor: Accessor, usage: str = "data") -> Accessor:
        kept = canonical.setdefault((usage, accessor.content_key()), accessor)
        if kept is not accessor:
            replaced.add(id(accessor))
        return kept

    for _, primitive in doc.iter_primitives():
        for table in [primitive.attributes, primitive.custom_attributes, *primitive.targets]:
            for key, accessor in table.items():
                table[key] = resolve(accessor, "vertex")
        if primitive.indices is not None:
            primitive.indices = resolve(primitive.indices, "indices")
    for animation in doc.animations:
        for sampler in animation.samplers:
            sampler.input = resolve(sampler.input)
            sampler.output = resolve(sampler.output)
    for skin in doc.skins:
        if skin.inverse_bind_matrices is not None:
            skin.inverse_bind_matrices = resolve(skin.inverse_bind_matrices)

    return len(replaced)


@dataclass
class PruneReport:
    channels: int = 0
    samplers: int = 0
    animations: int = 0
    primitives: int = 0
    meshes: int = 0
    vertices: int = 0

    @property
    def total(self) -> int:
        return (
            self.channels
            + self.samplers
            + self.animations
            + self.primitives
            + self.meshes
            + self.vertices
        )


def prune(doc: Document) -> PruneReport:
    """
    Remove unreachable or empty objects and vertices no triangle uses.

    Drops channels without a target node, samplers without channels, empty
    animations, primitives whose index buffer is empty, meshes left with no
    primitives, and compacts unreferenced vertices out of indexed primitives.
    """
    report = PruneReport()

    for animation in doc.list_animations():
        for channel in animation.list_channels():
            if channel.get_target_node() is None:
                channel.dispose()
                report.channels += 1
        for sampler in animation.list_samplers():
            if sampler.ref_count == 0:
                sampler.dispose()
                report.samplers += 1
        if not animation.channels:
            doc.animations.remove(animation)
            report.animations += 1

    for mesh in doc.list_meshes():
        had_primitives = bool(mesh.primitives)
        for primitive in mesh.list_primitives():
            if primitive.indices is not None and primitive.indices.get_count() == 0:
                mesh.primitives.remove(primitive)
                report.primitives += 1
        if had_primitives and not mesh.primitives:
            doc.remove_mesh(mesh)
            report.meshes += 1

    usage = doc.accessor_usage()
    for _, primitive in doc.iter_primitives():
        indices = primitive.get_indices()
        if indices is None:
            continue
        vertex_count = primitive.get_vertex_count()
        used = np.unique(indices.get_array())
        if len(used) == vertex_count:
            continue
        remap = np.zeros(vertex_count, dtype=np.uint32)
        remap[used] = np.arange(len(used), dtype=np.uint32)
        doc.detach_shared(primitive, usage)
        primitive.rebuild(remap, used)
        report.vertices += vertex_count - len(used)

    return report


def weld(doc: Document) -> int:
    """
    Merge vertices whose every attribute is bitwise identical.

    Unlike :func:`merge_by_distance` this never changes what is rendered.
    Returns the number of vertices removed.
    """
    usage = doc.accessor_usage()
    removed = 0

    for _, primitive in doc.iter_primitives():
        if primitive.get_indices() is None:
            continue
        accessors = primitive.vertex_accessors()
        vertex_count = primitive.get_vertex_count()
        if not accessors or vertex_count < 2:
            continue

        rows = np.concatenate(
            [a.get_elements().view(np.uint8).reshape(vertex_count, -1) for a in accessors],
            axis=1,
        )
        merged = first_seen_remap(rows)
        if merged is None:
            continue
        remap, new_to_old = merged

        doc.detach_shared(primitive, usage)
        primitive.rebuild(remap, new_to_old)
        removed += vertex_count - len(new_to_old)

    return removed
