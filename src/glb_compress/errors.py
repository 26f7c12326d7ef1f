"""Exception types raised by glb-compress."""


class CompressError(Exception):
    """Base class for all glb-compress errors."""


class InvalidGlbError(CompressError, ValueError):
    """Input could not be parsed as a GLB/glTF document."""


class CompressionFailedError(CompressError, RuntimeError):
    """Both the external compressor and the in-process fallback failed."""


class CompressedGeometryError(InvalidGlbError):
    """Input geometry is compressed with a codec that cannot be decoded in-process."""

    def __init__(self, message: str, extensions: list[str]) -> None:
        super().__init__(message)
        self.extensions = extensions
