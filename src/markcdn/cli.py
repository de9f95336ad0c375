"""Command-line interface for markcdn."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.syntax import Syntax

from markcdn import __version__
from markcdn.cache import SQLiteBuildCache
from markcdn.config import ConfigManager, ImagesConfig
from markcdn.coordinator import UploadCoordinator, prefetch_project_files
from markcdn.errors import MarkcdnError, MissingCredentialsError
from markcdn.files import DirectoryFileIndex
from markcdn.logging_config import setup_logging
from markcdn.markup import MarkupGenerator
from markcdn.mdast import Node
from markcdn.rewriter import DocumentRewriter
from markcdn.uploadcare import UploadcareClient

console = Console()
# Separate stderr console for status output (doesn't mix with stdout JSON)
stderr_console = Console(stderr=True)


def _load_config(config_path: Path | None) -> ImagesConfig:
    try:
        return ConfigManager().load(config_path)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot load configuration: {e}") from e


def _open_cache(cache_db: Path | None) -> SQLiteBuildCache:
    if cache_db is not None:
        return SQLiteBuildCache(cache_db)
    return SQLiteBuildCache.default()


async def _rewrite_tree(
    config: ImagesConfig,
    tree: Node,
    document_dir: Path,
    cache: SQLiteBuildCache,
) -> list[Node]:
    async with UploadcareClient(config.pubkey or "", config.get_secret_key()) as client:
        coordinator = UploadCoordinator(client, cache)
        generator = MarkupGenerator(config, coordinator, DirectoryFileIndex())
        return await DocumentRewriter(generator).rewrite(tree, document_dir)


async def _prefetch(config: ImagesConfig, cache: SQLiteBuildCache) -> int:
    async with UploadcareClient(config.pubkey or "", config.get_secret_key()) as client:
        return await prefetch_project_files(client, cache)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", prog_name="markcdn")
def cli() -> None:
    """Responsive Uploadcare images for markdown documents."""
    load_dotenv()


@cli.command()
@click.argument(
    "tree_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--dir",
    "document_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory image URLs are relative to (default: the tree's directory).",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the rewritten tree here instead of stdout.",
)
@click.option(
    "--cache-db",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Build cache database (default: .markcdn/cache.db).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def rewrite(
    tree_path: Path,
    document_dir: Path | None,
    config_path: Path | None,
    output: Path | None,
    cache_db: Path | None,
    verbose: bool,
) -> None:
    """Rewrite the images of an mdast JSON tree."""
    setup_logging(verbose)
    config = _load_config(config_path)

    try:
        data: dict[str, Any] = json.loads(tree_path.read_text(encoding="utf-8"))
        tree = Node.from_dict(data)
    except (ValueError, KeyError, TypeError) as e:
        raise click.ClickException(f"Invalid mdast tree {tree_path}: {e}") from e

    try:
        replaced = asyncio.run(
            _rewrite_tree(
                config,
                tree,
                (document_dir or tree_path.parent).resolve(),
                _open_cache(cache_db),
            )
        )
    except MarkcdnError as e:
        raise click.ClickException(str(e)) from e

    result = json.dumps(tree.to_dict(), indent=2, ensure_ascii=False)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result + "\n", encoding="utf-8")
        logger.info(f"Written {output}")
    else:
        click.echo(result)

    stderr_console.print(f"[green]✓[/green] Rewrote {len(replaced)} image node(s)")


@cli.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option(
    "--cache-db",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Build cache database (default: .markcdn/cache.db).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def prefetch(config_path: Path | None, cache_db: Path | None, verbose: bool) -> None:
    """Seed the build cache with the files already uploaded to the project."""
    setup_logging(verbose)
    config = _load_config(config_path)

    missing = [
        name
        for name, value in (("pubkey", config.pubkey), ("secretKey", config.get_secret_key()))
        if not value
    ]
    if missing:
        raise click.ClickException(str(MissingCredentialsError(*missing)))

    try:
        count = asyncio.run(_prefetch(config, _open_cache(cache_db)))
    except MarkcdnError as e:
        raise click.ClickException(str(e)) from e

    stderr_console.print(f"[green]✓[/green] Cached {count} project image(s)")


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("show")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
def config_show(config_path: Path | None) -> None:
    """Show the effective configuration (secret key omitted)."""
    manager = ConfigManager()
    try:
        cfg = manager.load(config_path)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot load configuration: {e}") from e

    config_json = json.dumps(cfg.public_dump(), indent=2, ensure_ascii=False)
    console.print(Syntax(config_json, "json", theme="monokai", line_numbers=False))
    if manager.config_path:
        stderr_console.print(f"[dim]Loaded from {manager.config_path}[/dim]")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
