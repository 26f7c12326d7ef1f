"""Texture downscaling and WebP recompression."""

from __future__ import annotations

import io
from dataclasses import dataclass, field

from PIL import Image as PILImage

from glb_compress.scene.model import Document, Image
from glb_compress.utils.constants import TEXTURE_MAX_SIZE, WEBP_QUALITY

WEBP_EXTENSION = "EXT_texture_webp"

_PIL_FORMATS = {"image/png": "PNG", "image/jpeg": "JPEG"}


@dataclass
class TextureReport:
    resized: int = 0
    converted: int = 0
    bytes_before: int = 0
    bytes_after: int = 0
    skipped: list[str] = field(default_factory=list)


def _encode(img: PILImage.Image, fmt: str, quality: int) -> bytes:
    buffer = io.BytesIO()
    if fmt == "JPEG":
        img.convert("RGB").save(buffer, "JPEG", quality=90)
    elif fmt == "WEBP":
        img.save(buffer, "WEBP", quality=quality, method=4)
    else:
        img.save(buffer, fmt, optimize=True)
    return buffer.getvalue()


def _recompress(
    image: Image, max_size: int, webp: bool, quality: int
) -> tuple[bytes, str, bool] | None:
    """Return ``(data, mime, resized)`` when the image can be made smaller."""
    assert image.data is not None
    fmt = _PIL_FORMATS[image.mime_type or ""]
    with PILImage.open(io.BytesIO(image.data)) as img:
        img.load()
        resized = img.width > max_size or img.height > max_size
        if resized:
            img.thumbnail((max_size, max_size), PILImage.Resampling.LANCZOS)

        best: tuple[bytes, str] | None = None
        if resized:
            best = (_encode(img, fmt, quality), image.mime_type or "image/png")
        if webp:
            candidate = _encode(img, "WEBP", quality)
            reference = best[0] if best else image.data
            if len(candidate) < len(reference):
                best = (candidate, "image/webp")

    if best is None or (not resized and len(best[0]) >= len(image.data)):
        return None
    return best[0], best[1], resized


def compress_textures(
    doc: Document,
    max_size: int = TEXTURE_MAX_SIZE,
    webp: bool = True,
    quality: int = WEBP_QUALITY,
) -> TextureReport:
    """
    Downscale embedded PNG/JPEG textures and re-encode them as WebP.

    Images larger than ``max_size`` on either side are shrunk with their
    aspect ratio kept. WebP replaces the original only when it is smaller;
    textures pointing at a converted image move to ``EXT_texture_webp``.
    Images that fail to decode are reported in ``skipped`` and left as-is.
    """
    report = TextureReport()
    converted: set[int] = set()

    for index, image in enumerate(doc.images):
        if image.data is None or image.mime_type not in _PIL_FORMATS:
            continue
        try:
            result = _recompress(image, max_size, webp, quality)
        except (OSError, ValueError, PILImage.DecompressionBombError) as e:
            report.skipped.append(f"{image.name or f'image {index}'}: {e}")
            continue
        if result is None:
            continue

        data, mime, resized = result
        report.bytes_before += len(image.data)
        report.bytes_after += len(data)
        report.resized += int(resized)
        if mime == "image/webp":
            report.converted += 1
            converted.add(index)
        image.data = data
        image.mime_type = mime

    if converted:
        for texture in doc.json.get("textures", []):
            source = texture.get("source")
            if source in converted:
                extensions = texture.setdefault("extensions", {})
                extensions[WEBP_EXTENSION] = {"source": source}
                del texture["source"]
        doc.declare_extension(WEBP_EXTENSION, required=True)

    return report
