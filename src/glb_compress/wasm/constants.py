"""WASI constants used by the in-memory gltfpack host."""

WASI_MODULE: str = "wasi_snapshot_preview1"

# WASI error codes
WASI_ESUCCESS: int = 0
WASI_EBADF: int = 8
WASI_EINVAL: int = 28
WASI_ENOENT: int = 44
WASI_ENOSYS: int = 52

# WASI file types
FILETYPE_DIRECTORY: int = 3
FILETYPE_REGULAR_FILE: int = 4

# path_open oflags
OFLAGS_CREAT: int = 1

# fd_seek whence
WHENCE_SET: int = 0
WHENCE_CUR: int = 1
WHENCE_END: int = 2

# First descriptor handed out for opened files (0-2 stdio, 3-4 preopens)
FIRST_FILE_FD: int = 5
