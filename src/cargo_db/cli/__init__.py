"""CLI module for schema validation, table migration and ad-hoc queries.

Usage:
    cargo-db validate --schema-dir schemas
    cargo-db migrate                       # show the plan
    cargo-db migrate --confirm             # apply it
    CARGO_DB_PROFILE=local cargo-db query restaurant --select '["name", {"reviews": "*"}]' \\
        --filter '{"name": {"!eq": "Test"}}' --sort '["name"]' --limit 10

Commands:
    validate  - Load the schema directory and report every schema error
    migrate   - Diff the database against the schemas and apply the DDL
    query     - Run a query and print the result as JSON
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from cargo_db.config.loader import load_db_config
from cargo_db.errors import CargoError, SchemaError
from cargo_db.factory import DEFAULT_ENV_PREFIX, ProfileNotFoundError, get_adapter
from cargo_db.query.filters import QueryReport
from cargo_db.schema.loader import build_registry, load_schema_directory
from cargo_db.schema.registry import Registry
from cargo_db.store import ContentStore
from cargo_db.table.constructor import apply_migration, collect_tables, format_plan, plan_migration

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _schema_dir(args: argparse.Namespace) -> Path:
    if args.schema_dir:
        return Path(args.schema_dir)
    try:
        return Path(load_db_config(_config_path(args)).schema_dir)
    except FileNotFoundError:
        return Path("schemas")


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config) if getattr(args, "config", None) else None


def _load_registry(args: argparse.Namespace) -> Registry | None:
    """Load and verify the schema directory, printing errors on failure."""
    schema_dir = _schema_dir(args)
    try:
        return build_registry(load_schema_directory(schema_dir))
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
    except SchemaError as e:
        console.print(f"[bold red]x[/bold red] {str(e).splitlines()[0]}")
        for message in e.errors:
            console.print(f"  [red]-[/red] {message}")
    return None


def _parse_json(value: str | None, option: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        # Bare selectors like name,price or * are not JSON
        if option == "--select":
            return value
        raise


def _print_report(report: QueryReport) -> None:
    for clause in report.ignored_filters:
        console.print(f"[yellow]Ignored filter:[/yellow] {clause}")
    for clause in report.ignored_sorts:
        console.print(f"[yellow]Ignored sort:[/yellow] {clause}")


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_migrate(args: argparse.Namespace) -> int:
    """Async implementation for migrate command.

    Args:
        args: Parsed arguments with confirm, keep_unused, profile and
            env_prefix.

    Returns:
        0 on success, 1 on failure.
    """
    registry = _load_registry(args)
    if registry is None:
        return 1

    try:
        adapter = get_adapter(
            args.profile, env_prefix=args.env_prefix, config_path=_config_path(args)
        )
    except (FileNotFoundError, ProfileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        plan = await plan_migration(
            adapter, collect_tables(registry), drop_unused=not args.keep_unused
        )

        if not plan.has_changes:
            console.print("[bold green]v[/bold green] Tables are up to date")
            return 0

        summary = Table(title="Migration Plan", show_header=True, header_style="bold")
        summary.add_column("", style="dim", width=3)
        summary.add_column("Change")
        for step, line in enumerate(format_plan(plan), start=1):
            summary.add_row(str(step), line)
        console.print(summary)

        if args.show_sql or not args.confirm:
            console.print()
            for statement in plan.statements:
                console.print(f"[dim]{statement};[/dim]")

        if not args.confirm:
            console.print()
            console.print(
                "[dim]To apply the migration, add[/dim] [cyan]--confirm[/cyan] [dim]flag.[/dim]"
            )
            return 0

        console.print()
        console.print("[bold]Applying migration...[/bold]")
        result = await apply_migration(adapter, plan, confirm=True)
    finally:
        await adapter.close()

    if result.success:
        console.print("[bold green]v Migration complete![/bold green]")
        if result.tables_created:
            console.print(f"  Tables created: {result.tables_created}")
        if result.tables_altered:
            console.print(f"  Tables altered: {result.tables_altered}")
        if result.tables_dropped:
            console.print(f"  Tables dropped: {result.tables_dropped}")
        return 0

    console.print(f"\n[bold red]x[/bold red] {result.error}")
    return 1


async def _async_query(args: argparse.Namespace) -> int:
    """Async implementation for query command.

    Args:
        args: Parsed arguments with type, select, filter, sort, limit,
            profile and env_prefix.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        selector = _parse_json(args.select, "--select")
        filter = _parse_json(args.filter, "--filter")
        sort = _parse_json(args.sort, "--sort")
    except json.JSONDecodeError as e:
        console.print(f"[red]Error: invalid JSON argument: {e}[/red]")
        return 1

    registry = _load_registry(args)
    if registry is None:
        return 1

    try:
        config = load_db_config(_config_path(args))
        adapter = get_adapter(args.profile, env_prefix=args.env_prefix, config=config)
    except (FileNotFoundError, ProfileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    store = ContentStore(adapter, registry, max_depth=config.max_depth)
    report = QueryReport()
    try:
        rows = await store.get(
            args.type, selector, filter=filter, sort=sort, limit=args.limit, report=report
        )
    except CargoError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await store.close()

    console.print_json(data={"data": rows})
    if not report.is_clean:
        _print_report(report)
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_validate(args: argparse.Namespace) -> int:
    """Load the schema directory and report every schema error.

    Reads only local files -- no database calls.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 if every schema is valid, 1 otherwise.
    """
    registry = _load_registry(args)
    if registry is None:
        return 1

    table = Table(title="Content Types", show_header=True, header_style="bold")
    table.add_column("Type")
    table.add_column("Kind", style="dim")
    table.add_column("Fields", justify="right")
    table.add_column("Description")
    for schema in [*registry.entities(), *registry.components()]:
        table.add_row(
            schema.name,
            schema.kind,
            str(len(schema.fields)),
            schema.description.description or "",
        )
    console.print(table)
    console.print("[bold green]v[/bold green] Schemas are valid")
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    """Diff the database against the schemas and apply the DDL.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_migrate(args))


def cmd_query(args: argparse.Namespace) -> int:
    """Run a query and print the result as JSON.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_query(args))


# ============================================================================
# Main entry point
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="cargo-db",
        description="Schema-driven content store toolkit",
    )

    parser.add_argument(
        "--env-prefix",
        default=DEFAULT_ENV_PREFIX,
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument("--config", help="Path to db.toml (default: ./db.toml)")
    parser.add_argument("--schema-dir", help="Directory of schema files")
    parser.add_argument("--profile", help="Database profile from db.toml")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # validate command
    p_validate = subparsers.add_parser(
        "validate",
        help="Load the schema directory and report schema errors",
    )
    p_validate.set_defaults(func=cmd_validate)

    # migrate command
    p_migrate = subparsers.add_parser(
        "migrate",
        help="Create and alter tables to match the schemas",
    )
    p_migrate.add_argument(
        "--confirm",
        action="store_true",
        help="Apply the migration (default: show the plan only)",
    )
    p_migrate.add_argument(
        "--keep-unused",
        action="store_true",
        help="Do not drop tables that no schema generates",
    )
    p_migrate.add_argument(
        "--show-sql",
        action="store_true",
        help="Print the DDL statements even when applying",
    )
    p_migrate.set_defaults(func=cmd_migrate)

    # query command
    p_query = subparsers.add_parser(
        "query",
        help="Query an entity type and print JSON",
    )
    p_query.add_argument("type", help="Entity type name")
    p_query.add_argument("--select", default="*", help='Selector, e.g. \'["name", {"reviews": "*"}]\'')
    p_query.add_argument("--filter", help='Filter as JSON, e.g. \'{"name": {"!eq": "Test"}}\'')
    p_query.add_argument("--sort", help='Sort as JSON, e.g. \'["name"]\'')
    p_query.add_argument("--limit", type=int, help="Maximum number of rows")
    p_query.set_defaults(func=cmd_query)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
