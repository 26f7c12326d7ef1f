"""Fetch the gltfpack WASM build from npm into the glb_compress package.

The module is not checked in; the in-process codec is skipped until it is
fetched.

Usage:
    python scripts/update_wasm.py                  # Fetch latest
    python scripts/update_wasm.py --version 1.0.0  # Fetch a specific release
    python scripts/update_wasm.py --check          # Exit 1 if an update exists
"""

from __future__ import annotations

import io
import json
import tarfile
import urllib.error
import urllib.request
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from wasmtime import Engine, Module, WasmtimeError

from glb_compress.wasm.runtime import get_wasm_path

NPM_REGISTRY_URL = "https://registry.npmjs.org/gltfpack"
# File name of the WASI library build inside the npm tarball
TARBALL_MEMBER = "library.wasm"
WASM_MAGIC = b"\x00asm"

app = typer.Typer(add_completion=False)
console = Console()


def version_file(wasm_path: Path) -> Path:
    return wasm_path.with_suffix(".version")


def installed_version(wasm_path: Path) -> str | None:
    """Version recorded next to the module, or None when nothing is installed."""
    marker = version_file(wasm_path)
    if not wasm_path.exists() or not marker.exists():
        return None
    return marker.read_text().strip() or None


def resolve_release(requested: str | None = None) -> tuple[str, str]:
    """
    Look up a gltfpack release on npm.

    Returns:
        Tuple of (version, tarball_url)
    """
    with urllib.request.urlopen(NPM_REGISTRY_URL, timeout=30) as resp:
        registry: dict[str, Any] = json.loads(resp.read().decode("utf-8"))

    release = requested or registry["dist-tags"]["latest"]
    versions = registry["versions"]
    if release not in versions:
        recent = sorted(versions)[-5:]
        raise ValueError(f"gltfpack {release} not on npm (recent: {', '.join(recent)})")
    return release, versions[release]["dist"]["tarball"]


def extract_wasm(tarball: bytes) -> bytes:
    """Pull the library build out of an npm tarball and check it is a WASM module."""
    with tarfile.open(fileobj=io.BytesIO(tarball), mode="r:gz") as tar:
        member = next(
            (m for m in tar.getmembers() if m.name.endswith(TARBALL_MEMBER)), None
        )
        handle = tar.extractfile(member) if member is not None else None
        if handle is None:
            raise FileNotFoundError(f"{TARBALL_MEMBER} not found in npm package")
        data = handle.read()

    if not data.startswith(WASM_MAGIC):
        raise ValueError(f"{TARBALL_MEMBER} is not a WASM module")

    Module.validate(Engine(), data)
    return data


def install(wasm_path: Path, requested: str | None = None, force: bool = False) -> str | None:
    """
    Download and install a release.

    Returns:
        The installed version, or None if it was already present.
    """
    release, url = resolve_release(requested)
    if not force and installed_version(wasm_path) == release:
        return None

    console.print(f"[cyan]Downloading[/] gltfpack {release} from {url}")
    with urllib.request.urlopen(url, timeout=60) as resp:
        data = extract_wasm(resp.read())

    wasm_path.parent.mkdir(parents=True, exist_ok=True)
    wasm_path.write_bytes(data)
    version_file(wasm_path).write_text(f"{release}\n")
    console.print(f"[green]Installed[/] {wasm_path} ({len(data) / 1024:.1f} KB)")
    return release


@app.command()
def update(
    version: Annotated[
        str | None, typer.Option("--version", help="gltfpack release to fetch")
    ] = None,
    check: Annotated[
        bool, typer.Option("--check", help="Only report whether an update exists")
    ] = False,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Download even if already installed")
    ] = False,
) -> None:
    wasm_path = get_wasm_path()
    try:
        if check:
            current = installed_version(wasm_path)
            latest, _ = resolve_release()
            console.print(f"Installed: {current or 'none'}")
            console.print(f"Latest:    {latest}")
            if current != latest:
                raise typer.Exit(code=1)
            return

        installed = install(wasm_path, version, force=force)
        if installed is None:
            console.print(f"Already at {installed_version(wasm_path)}")
    except (
        OSError,
        ValueError,
        tarfile.TarError,
        json.JSONDecodeError,
        urllib.error.URLError,
        WasmtimeError,
    ) as e:
        console.print(f"[bold red][ERROR][/] {e}")
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
