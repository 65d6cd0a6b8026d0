import argparse
import asyncio
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cookbox.config import Config
from cookbox.errors import CookboxError
from cookbox.importer import ImportResult
from cookbox.package import encode
from cookbox.planner import ImportPlanner
from cookbox.services import RecipeBox


console = Console()


def parse_selection(text: str) -> list[int]:
    try:
        return sorted({int(part) for part in text.split(",") if part.strip()})
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"expected comma separated recipe numbers, got {text!r}"
        ) from None


def print_categories(recipe_box: RecipeBox) -> None:
    table = Table("id", "icon", "name")
    for category in recipe_box.coordinator.categories:
        table.add_row(category.id, category.icon, category.name)
    console.print(table)


def print_preview(planner: ImportPlanner) -> None:
    table = Table("#", "recipe", "time", "selected", title=planner.preview.source)
    for name, items in planner.groups:
        table.add_section()
        table.add_row("", f"[bold]{name}[/bold] ({len(items)})", "", "")
        for index, recipe in items:
            mark = "x" if index in planner.selection else ""
            table.add_row(str(index), recipe.name, f"{recipe.recipe_time} min", mark)
    console.print(table)
    console.print(str(planner.summary))


def print_result(result: ImportResult) -> None:
    console.print(str(result))
    if result.failures:
        table = Table("#", "recipe", "category", "cause", "error", title="Failures")
        for failure in result.failures:
            table.add_row(
                str(failure.index),
                failure.recipe_name,
                failure.category_name,
                failure.cause,
                str(failure.error),
            )
        console.print(table)


async def run(args: argparse.Namespace, config: Config) -> int:
    recipe_box = RecipeBox.from_config(config)
    await recipe_box.start()
    try:
        await recipe_box.coordinator.load_categories()
        match args.command:
            case "categories":
                print_categories(recipe_box)
            case "import":
                path = Path(args.file)
                import_id, planner = recipe_box.open_import(
                    path.read_bytes(), source=path.name
                )
                if args.select is not None:
                    planner.deselect_all()
                    for index in args.select:
                        planner.toggle(index)
                elif not args.all:
                    planner.deselect_all()
                print_preview(planner)
                if not planner.can_import:
                    console.print("Nothing selected, nothing imported.")
                    return 0
                result = await recipe_box.commit_import(import_id)
                print_result(result)
                return 1 if result.failures else 0
            case "export":
                package = await recipe_box.export()
                Path(args.file).write_bytes(encode(package))
                console.print(f"Exported {len(package.recipes)} recipes to {args.file}")
    except (CookboxError, OSError) as exc:
        console.print(f"[red]{type(exc).__name__}[/red]: {exc}")
        return 1
    finally:
        await recipe_box.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="cookbox")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("categories", help="List categories.")
    imp = sub.add_parser("import", help="Import recipes from an export package.")
    imp.add_argument("file")
    group = imp.add_mutually_exclusive_group()
    group.add_argument("--all", action="store_true", help="Import every recipe.")
    group.add_argument(
        "--select",
        type=parse_selection,
        help="Comma separated recipe numbers, e.g. 0,2,5",
    )
    exp = sub.add_parser("export", help="Export every category and recipe.")
    exp.add_argument("file")
    args = parser.parse_args(argv)

    config = Config()
    logging.basicConfig(
        level=config.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console)],
    )
    return asyncio.run(run(args, config))


if __name__ == "__main__":
    raise SystemExit(main())
