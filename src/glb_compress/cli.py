"""Command-line interface for glb-compress."""

from __future__ import annotations

import glob
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from glb_compress.errors import CompressError
from glb_compress.utils.constants import MAX_FILE_SIZE, PRESET_DESCRIPTIONS
from glb_compress.utils.logging import (
    StepTimer,
    format_bytes,
    format_count,
    format_reduction,
    log_error,
    log_info,
    log_ok,
    print_header,
)

try:
    __version__ = version("glb-compress")
except PackageNotFoundError:
    __version__ = "unknown"

app = typer.Typer(
    name="glb-compress",
    help="Compress GLB/glTF files for web delivery",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
err_console = Console(stderr=True)

_SUFFIX = re.compile(r"\.(glb|gltf)$", re.IGNORECASE)
_GLOB_CHARS = re.compile(r"[*?\[]")


class Preset(str, Enum):
    default = "default"
    balanced = "balanced"
    aggressive = "aggressive"
    max = "max"


@dataclass
class FileOutcome:
    input_path: Path
    output_path: Path
    success: bool
    message: str
    elapsed: float = 0.0


def version_callback(value: bool) -> None:
    if value:
        print(f"glb-compress {__version__}")
        raise typer.Exit()


def expand_inputs(patterns: list[str]) -> list[Path]:
    """Expand glob patterns, keeping literal paths as given; drops duplicates."""
    seen: set[Path] = set()
    paths: list[Path] = []
    for pattern in patterns:
        matches = sorted(glob.glob(pattern)) if _GLOB_CHARS.search(pattern) else [pattern]
        for match in matches:
            path = Path(match)
            if path not in seen:
                seen.add(path)
                paths.append(path)
    return paths


def output_path_for(input_path: Path, output_dir: Path | None) -> Path:
    """``model.glb`` -> ``model-compressed.glb``, in ``output_dir`` if given."""
    name = input_path.name
    renamed = _SUFFIX.sub("-compressed.glb", name)
    if renamed == name:
        renamed = f"{name}-compressed.glb"
    return (output_dir or input_path.parent) / renamed


def compress_file(
    input_path: Path,
    output_dir: Path | None,
    *,
    preset: str,
    simplify: float | None,
    quiet: bool,
    force: bool,
    timeout: float | None,
) -> FileOutcome:
    """Compress one file; errors are reported in the outcome, never raised."""
    from glb_compress.pipeline import CompressOptions, compress
    from glb_compress.utils import validate_glb_magic

    output_path = output_path_for(input_path, output_dir)

    def fail(message: str) -> FileOutcome:
        return FileOutcome(input_path, output_path, False, message)

    if not force and output_path.exists():
        return fail(f"Output file exists: {output_path} (use -f to overwrite)")
    if not input_path.is_file():
        return fail(f"File not found: {input_path}")
    size = input_path.stat().st_size
    if size > MAX_FILE_SIZE:
        return fail(f"File too large: {format_bytes(size)} (max {format_bytes(MAX_FILE_SIZE)})")

    data = input_path.read_bytes()
    try:
        if input_path.suffix.lower() != ".gltf":
            validate_glb_magic(data)
        start = time.perf_counter()
        result = compress(
            data,
            CompressOptions(
                preset=preset,  # type: ignore[arg-type]
                simplify_ratio=simplify,
                quiet=quiet,
                gltfpack_timeout=timeout,
            ),
        )
    except CompressError as e:
        return fail(str(e))

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.buffer)
    return FileOutcome(
        input_path,
        output_path,
        True,
        f"{format_bytes(len(data))} -> {format_bytes(result.size)} "
        f"({format_reduction(len(data), result.size)}) via {result.method}",
        time.perf_counter() - start,
    )


@app.command()
def compress_files(
    files: Annotated[
        list[str],
        typer.Argument(
            help="GLB files to compress (glob patterns are expanded)",
            metavar="FILES...",
        ),
    ],
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output directory (default: next to input with [italic]-compressed[/] suffix)",
            rich_help_panel="Core Options",
        ),
    ] = None,
    preset: Annotated[
        Preset,
        typer.Option(
            "--preset",
            "-p",
            help="Compression preset: "
            + "; ".join(f"{name}: {desc}" for name, desc in PRESET_DESCRIPTIONS.items()),
            rich_help_panel="Core Options",
        ),
    ] = Preset.default,
    simplify: Annotated[
        str | None,
        typer.Option(
            "--simplify",
            "-s",
            help="Additional mesh simplification ratio, between 0 and 1 (e.g. 0.5)",
            rich_help_panel="Core Options",
        ),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress progress output"),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite existing files"),
    ] = False,
    jobs: Annotated[
        int,
        typer.Option(
            "--jobs",
            "-j",
            min=1,
            help="Files to compress in parallel",
            rich_help_panel="Performance",
        ),
    ] = 1,
    timeout: Annotated[
        float | None,
        typer.Option(
            "--timeout",
            min=1.0,
            help="Seconds before a gltfpack run is killed (default: 60)",
            rich_help_panel="Performance",
        ),
    ] = None,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show the version and exit.",
        ),
    ] = None,
) -> None:
    """
    Compress GLB/glTF files with cleanup transforms and gltfpack.
    """
    from glb_compress.utils import parse_simplify_ratio

    simplify_ratio = parse_simplify_ratio(simplify)
    if simplify is not None and simplify_ratio is None:
        err_console.print(f"[bold red][ERROR][/] Invalid simplify ratio: {simplify} (must be 0-1)")
        raise typer.Exit(code=1)

    paths = expand_inputs(files)
    if not paths:
        err_console.print("[bold red][ERROR][/] No input files matched")
        raise typer.Exit(code=1)

    # Pipeline progress lines interleave when several files run at once
    pipeline_quiet = quiet or jobs > 1
    timer = StepTimer(total=len(paths))
    if not quiet:
        print_header(f"glb-compress {__version__}")

    def run(path: Path) -> FileOutcome:
        if not quiet:
            log_info(f"Compressing {path.name}...")
        return compress_file(
            path,
            output,
            preset=preset.value,
            simplify=simplify_ratio,
            quiet=pipeline_quiet,
            force=force,
            timeout=timeout,
        )

    with ThreadPoolExecutor(max_workers=jobs) as pool:
        outcomes = list(pool.map(run, paths))

    failed = 0
    for outcome in outcomes:
        if outcome.success:
            timer.record(outcome.input_path.name, outcome.elapsed)
            if not quiet:
                log_ok(f"{outcome.input_path.name}: {outcome.message}")
                log_info(f"Output: {outcome.output_path}")
        else:
            failed += 1
            log_error(f"{outcome.input_path}: {outcome.message}")

    if not quiet and len(outcomes) > 1:
        timer.print_summary()
        log_info(
            f"{format_count(len(outcomes) - failed, 'file')} of {len(outcomes)} compressed"
        )
    if failed:
        raise typer.Exit(code=1)


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
