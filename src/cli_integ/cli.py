"""Command-line interface for cli-integ maintenance tasks."""

import asyncio
import logging
import sys

import click

from .config import HarnessConfig
from .exceptions import CliIntegError
from .infra.stack_manager import StackManager
from .naming import generate_stack_name_prefix, validate_name


@click.group()
@click.version_option(package_name="cli-integ")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """cli-integ test harness utilities."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@cli.command()
@click.option(
    "--run-id",
    envvar=["CLI_INTEG_RUN_ID", "GITHUB_RUN_ID"],
    help="CI run identifier to embed in the prefix",
)
def prefix(run_id: str | None) -> None:
    """Print a fresh stack-name prefix."""
    click.echo(generate_stack_name_prefix(run_id))


@cli.command()
def env() -> None:
    """Show the harness configuration resolved from the environment."""
    config = HarnessConfig.from_environment()
    for key, value in config.as_dict().items():
        click.echo(f"{key}: {value if value is not None else '-'}")


@cli.command()
@click.option(
    "--prefix",
    "stack_prefix",
    required=True,
    help="Delete stacks whose names begin with this prefix, e.g. cdktest-1234-",
)
@click.option("--region", help="AWS region (default: from environment)")
@click.option(
    "--endpoint-url",
    help=(
        "AWS endpoint URL "
        "(e.g., http://localhost:4566 for LocalStack, or other AWS-compatible services)"
    ),
)
@click.option("--dry-run", is_flag=True, help="List matching stacks without deleting them")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def cleanup(
    stack_prefix: str,
    region: str | None,
    endpoint_url: str | None,
    dry_run: bool,
    yes: bool,
) -> None:
    """Delete stacks left behind by interrupted test runs."""
    try:
        validate_name(stack_prefix.rstrip("-"), field="prefix")
    except CliIntegError as e:
        raise click.BadParameter(str(e), param_hint="--prefix") from e

    config = HarnessConfig.from_environment()
    region = region or config.region
    endpoint_url = endpoint_url or config.endpoint_url

    async def _list() -> list[str]:
        async with StackManager(region=region, endpoint_url=endpoint_url) as manager:
            return await manager.list_stacks(stack_prefix)

    async def _delete() -> list[str]:
        async with StackManager(region=region, endpoint_url=endpoint_url) as manager:
            return await manager.delete_stacks_with_prefix(stack_prefix)

    names = asyncio.run(_list())
    if not names:
        click.echo(f"No stacks with prefix '{stack_prefix}' in {region}")
        return

    click.echo(f"Stacks with prefix '{stack_prefix}' in {region}:")
    for name in names:
        click.echo(f"  {name}")

    if dry_run:
        return
    if not yes:
        click.confirm(f"Delete {len(names)} stack(s)?", abort=True)

    try:
        deleted = asyncio.run(_delete())
    except CliIntegError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Deleted {len(deleted)} stack(s)")


if __name__ == "__main__":
    cli()
