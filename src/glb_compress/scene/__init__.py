"""Scene document model and GLB codec."""

from glb_compress.scene.io import read_binary, write_binary
from glb_compress.scene.model import (
    Accessor,
    Animation,
    Channel,
    Document,
    Image,
    Mesh,
    Node,
    Primitive,
    Sampler,
    Semantic,
    Skin,
)

__all__ = [
    "Accessor",
    "Animation",
    "Channel",
    "Document",
    "Image",
    "Mesh",
    "Node",
    "Primitive",
    "Sampler",
    "Semantic",
    "Skin",
    "read_binary",
    "write_binary",
]
