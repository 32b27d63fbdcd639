from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from snapchef.config import get_settings, resolve_cache_dir
from snapchef.errors import CacheError, ValidationError
from snapchef.log import configure_logging
from snapchef.models import PageResult, VisionResult
from snapchef.services import RECIPE_IMAGES_DIR, build_caches, build_services
from snapchef.storage import FileCache
from snapchef.utils import (
    SUPPORTED_IMAGE_EXTENSIONS,
    format_bytes,
    is_supported_image,
    require_existing_file,
)


app = typer.Typer(add_completion=False, no_args_is_help=True)
cache_app = typer.Typer(add_completion=False, no_args_is_help=True, help="Inspect or clear caches")
app.add_typer(cache_app, name="cache")
console = Console()

INPUT_ERROR_CODES = ("validation", "processing.invalid-image")


def _print_header() -> None:
    title = "[bold]SnapChef[/bold]  photo -> ingredients -> recipes"
    console.print(Panel.fit(title, border_style="bold green"))


def _exit_code_for(error_code: str | None) -> int:
    if error_code and error_code.startswith(INPUT_ERROR_CODES):
        return 1
    return 2


def _load_settings(ctx: typer.Context):
    try:
        return get_settings(cache_dir=ctx.obj.get("cache_dir"))
    except ValueError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


async def _scan(settings, image_path: Path, offline: bool) -> VisionResult:
    services = build_services(settings, offline=offline)
    try:
        return await services.vision.analyze(image_path)
    finally:
        await services.aclose()


async def _page(
    settings,
    offline: bool,
    ingredients: list[str],
    page: int,
    page_size: int,
    sort_by: str | None,
    filters: list[str],
) -> PageResult:
    services = build_services(settings, offline=offline)
    try:
        return await services.pager.get_page(
            ingredients, page=page, page_size=page_size, sort_by=sort_by, filters=filters
        )
    finally:
        await services.aclose()


def _render_ingredients(result: VisionResult) -> None:
    table = Table(title="Detected ingredients", header_style="bold magenta")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Ingredient", style="bold")
    table.add_column("Category")
    table.add_column("Confidence", justify="right")
    for idx, item in enumerate(result.ingredients, start=1):
        table.add_row(str(idx), item.name, item.category, f"{item.confidence:.2f}")
    console.print(table)
    console.print(
        f"[dim]Overall confidence {result.overall_confidence:.2f}, "
        f"{result.processing_time_ms} ms[/dim]"
    )


def _render_page(result: PageResult) -> None:
    view = result.view
    title = "Alternative recipes" if result.used_alternatives else "Recipes"
    table = Table(title=title, header_style="bold magenta")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Recipe", style="bold")
    table.add_column("Match", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Difficulty")
    table.add_column("Missing", style="dim")
    offset = (view.page_number - 1) * view.page_size
    for idx, recipe in enumerate(view.items, start=offset + 1):
        missing = ", ".join(recipe.missing_ingredients) if recipe.missing_ingredients else "-"
        table.add_row(
            str(idx),
            recipe.title,
            f"{recipe.match_percentage:.0f}%",
            f"{recipe.cooking_time} min",
            recipe.difficulty,
            missing,
        )
    console.print(table)
    source = "cache" if result.from_cache else "remote"
    console.print(
        f"[dim]Page {view.page_number} of {view.total_pages} "
        f"({view.total_items} recipes, {source}, {result.total_time_ms} ms)[/dim]"
    )


@app.callback()
def main(
    ctx: typer.Context,
    offline: bool = typer.Option(False, "--offline", help="Treat the network as unavailable"),
    cache_dir: Path | None = typer.Option(None, "--cache-dir", help="Cache directory"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    configure_logging(log_level)
    ctx.obj = {"offline": offline, "cache_dir": cache_dir}


@app.command()
def scan(
    ctx: typer.Context,
    image_path: Path = typer.Argument(..., help="Path to a food image"),
) -> None:
    """Detect the ingredients in a food photo."""
    _print_header()

    try:
        image_file = require_existing_file(image_path)
        if not is_supported_image(image_file):
            supported = ", ".join(sorted(SUPPORTED_IMAGE_EXTENSIONS))
            raise ValidationError(f"Unsupported image format. Supported: {supported}")
    except ValidationError as exc:
        console.print(f"[red]Input error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    settings = _load_settings(ctx)
    with console.status("[bold green]Analyzing image...[/bold green]"):
        result = asyncio.run(_scan(settings, image_file, ctx.obj["offline"]))

    if not result.success:
        console.print(f"[red]Recognition failed:[/red] {result.error}")
        raise typer.Exit(code=_exit_code_for(result.error_code))
    _render_ingredients(result)


@app.command()
def recipes(
    ctx: typer.Context,
    ingredients: list[str] = typer.Argument(..., help="Ingredients you have"),
    page: int = typer.Option(1, "--page", min=1, help="Page number"),
    page_size: int = typer.Option(10, "--page-size", min=1, help="Recipes per page"),
    sort: str | None = typer.Option(None, "--sort", help="match, time or difficulty"),
    filters: list[str] | None = typer.Option(
        None, "--filter", help="vegetarian, vegan, gluten-free, dairy-free, nut-free"
    ),
) -> None:
    """Suggest recipes for a list of ingredients."""
    _print_header()
    settings = _load_settings(ctx)
    with console.status("[bold green]Finding recipes...[/bold green]"):
        result = asyncio.run(
            _page(
                settings,
                ctx.obj["offline"],
                ingredients,
                page,
                page_size,
                sort,
                filters or [],
            )
        )

    if not result.success:
        console.print(f"[red]Recipe lookup failed:[/red] {result.error}")
        raise typer.Exit(code=_exit_code_for(result.error_code))
    if not result.recipes:
        console.print("[yellow]No recipes on this page.[/yellow]")
        return
    if result.used_alternatives:
        console.print("[yellow]No direct matches; showing alternative suggestions.[/yellow]")
    _render_page(result)


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show entries and disk usage per cache."""
    cache_dir = resolve_cache_dir(ctx.obj.get("cache_dir"))
    table = Table(title=f"Caches in {cache_dir}", header_style="bold magenta")
    table.add_column("Cache", style="bold")
    table.add_column("Entries", justify="right")
    table.add_column("Size", justify="right")
    total = 0
    for cache in build_caches(cache_dir).all():
        stats = cache.stats()
        total += stats["size_bytes"]
        table.add_row(stats["namespace"], str(stats["indexed_entries"]), stats["size"])
    console.print(table)
    console.print(f"[dim]Total {format_bytes(total)}[/dim]")


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Remove every cached entry."""
    cache_dir = resolve_cache_dir(ctx.obj.get("cache_dir"))

    async def _clear() -> None:
        for cache in build_caches(cache_dir).all():
            await cache.clear()
        FileCache(cache_dir / RECIPE_IMAGES_DIR, suffix=".img").clear()

    try:
        asyncio.run(_clear())
    except CacheError as exc:
        console.print(f"[red]Cache error:[/red] {exc}")
        raise typer.Exit(code=2) from exc
    console.print(f"[green]Cleared caches in {cache_dir}[/green]")


if __name__ == "__main__":
    app()
