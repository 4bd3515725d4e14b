"""Commands for extracting and inspecting a resource cache."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console
from rich.table import Table

from bundlecache.core.config import AppConfig
from bundlecache.core.coordinator import ResourceExtractor
from bundlecache.core.filesystem import LocalFileSystem
from bundlecache.core.freshness import expected_token, list_token_files
from bundlecache.core.package import FilePackageMetadata
from bundlecache.core.patch import PatchUpdater
from bundlecache.formats.archive import normalize_key, open_bundle

logger = structlog.get_logger()


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    return config, console, verbose


def _output_json(data: dict[str, Any]) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def _collect_resources(resources: tuple[str, ...], resources_file: Path | None) -> list[str]:
    """Merge --resource options with keys listed in a resources file.

    Blank lines and lines starting with '#' are ignored.
    """
    keys = list(resources)
    if resources_file is not None:
        for line in resources_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                keys.append(line)
    return keys


def _resource_options(func: Any) -> Any:
    """Options shared by extract and status."""
    options = [
        click.argument("bundle", type=click.Path(exists=True, path_type=Path)),
        click.option(
            "--cache-dir", "-C", required=True,
            type=click.Path(file_okay=False, path_type=Path),
            help="Directory receiving extracted resources",
        ),
        click.option(
            "--patch-dir", "-p",
            type=click.Path(file_okay=False, path_type=Path),
            help="Directory holding downloaded and installed patch archives",
        ),
        click.option(
            "--package-info", "-i",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Package metadata JSON (default: package.json next to the bundle)",
        ),
        click.option("--resource", "-r", "resources", multiple=True, help="Resource key (repeatable)"),
        click.option(
            "--resources-file", "-f",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            help="File listing one resource key per line",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_extractor(
    config: AppConfig,
    bundle: Path,
    cache_dir: Path,
    patch_dir: Path | None,
    package_info: Path | None,
    keys: list[str],
) -> ResourceExtractor:
    baseline = open_bundle(bundle)
    package = FilePackageMetadata(package_info or bundle.parent / "package.json")
    patch = (
        PatchUpdater(patch_dir, baseline, package, config.extractor)
        if patch_dir is not None
        else None
    )
    return ResourceExtractor(
        cache_dir, baseline, package, patch=patch, config=config.extractor
    ).add_resources(keys)


@click.command()
@_resource_options
@click.pass_context
def extract(
    ctx: click.Context,
    bundle: Path,
    cache_dir: Path,
    patch_dir: Path | None,
    package_info: Path | None,
    resources: tuple[str, ...],
    resources_file: Path | None,
) -> None:
    """Extract bundle resources into a cache directory."""
    config, console, verbose = _get_context_objects(ctx)

    keys = _collect_resources(resources, resources_file)
    if not keys:
        console.print("[red]Error: No resources given[/red]")
        raise click.Abort()

    try:
        extractor = _build_extractor(config, bundle, cache_dir, patch_dir, package_info, keys)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    try:
        extractor.start()
        extractor.wait_for_completion()
    finally:
        extractor.baseline.close()

    present = sorted(k for k in extractor.resources if (cache_dir / k).exists())
    result = {
        "outcome": extractor.outcome.value,
        "cache_dir": str(cache_dir),
        "resources": len(extractor.resources),
        "present": len(present),
    }

    if config.output_format == "json":
        _output_json(result)
        return

    color = "green" if result["present"] == result["resources"] else "yellow"
    console.print(
        f"[{color}]{extractor.outcome.value}: {result['present']}/{result['resources']} "
        f"resources in {cache_dir}[/{color}]"
    )
    if verbose:
        for key in present:
            console.print(f"  {key}")


@click.command()
@_resource_options
@click.pass_context
def status(
    ctx: click.Context,
    bundle: Path,
    cache_dir: Path,
    patch_dir: Path | None,
    package_info: Path | None,
    resources: tuple[str, ...],
    resources_file: Path | None,
) -> None:
    """Show freshness of a cache directory without modifying it."""
    config, console, _ = _get_context_objects(ctx)
    prefix = config.extractor.token_prefix
    fs = LocalFileSystem()

    try:
        keys = sorted(normalize_key(k) for k in _collect_resources(resources, resources_file))
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e

    baseline = open_bundle(bundle)
    package = FilePackageMetadata(package_info or bundle.parent / "package.json")
    patch = (
        PatchUpdater(patch_dir, baseline, package, config.extractor)
        if patch_dir is not None
        else None
    )

    try:
        expected = expected_token(prefix, package, patch, fs)
    finally:
        baseline.close()
    existing = list_token_files(fs.list_names(cache_dir), prefix)
    fresh = expected is not None and existing == [expected]

    data: dict[str, Any] = {
        "cache_dir": str(cache_dir),
        "expected_token": expected,
        "existing_tokens": existing,
        "fresh": fresh,
        "pending_patch": patch is not None and patch.downloaded_archive_path.exists(),
        "resources": {key: (cache_dir / key).exists() for key in keys},
    }

    if config.output_format == "json":
        _output_json(data)
        return

    table = Table(title="Resource Cache Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Cache directory", str(cache_dir))
    table.add_row("Expected token", expected or "(package metadata unavailable)")
    table.add_row("Existing tokens", ", ".join(existing) or "(none)")
    table.add_row("Fresh", "yes" if fresh else "no")
    table.add_row("Pending patch", "yes" if data["pending_patch"] else "no")
    console.print(table)

    if keys:
        resource_table = Table(title="Resources")
        resource_table.add_column("Key", style="cyan")
        resource_table.add_column("Present", style="magenta")
        for key, present in data["resources"].items():
            resource_table.add_row(key, "yes" if present else "no")
        console.print(resource_table)
