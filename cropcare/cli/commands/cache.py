"""Local cache maintenance commands."""

from typing import Annotated

import typer
from rich.console import Console

from cropcare.config import load_config
from cropcare.storage.cache import LocalCache
from cropcare.storage.translations import TranslationStore

console = Console()

cache_app = typer.Typer(help="Inspect and maintain the offline cache", no_args_is_help=True)


@cache_app.command("sweep", help="Delete expired cache entries")
def sweep_cache() -> None:
    config = load_config()
    cache = LocalCache(config.data_dir, size_limit=config.storage_size_limit)
    try:
        removed = cache.sweep()
        console.print(f"[green]✓ Removed {removed} expired entries[/green] | {cache.get_cache_size()} remaining")
    finally:
        cache.close()


@cache_app.command("clear", help="Delete all cached data")
def clear_cache(
    translations: Annotated[bool, typer.Option("--translations", help="Also forget saved translations")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
) -> None:
    if not yes and not typer.confirm("Clear the offline cache?", default=False):
        return

    config = load_config()
    cache = LocalCache(config.data_dir, size_limit=config.storage_size_limit)
    try:
        cache.clear()
    finally:
        cache.close()

    if translations:
        store = TranslationStore(config.data_dir, max_entries=config.translation_cache_size)
        try:
            store.clear()
        finally:
            store.close()
    console.print("[green]✓ Cache cleared[/green]")
