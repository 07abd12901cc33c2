"""CLI main entry point."""

import click

from .commands import classify, config, kms, plan, reconcile
from .shared.logging import configure_logging, verbosity_to_level


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file path")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: int, json_output: bool) -> None:
    """Plan and reconcile Ceph daemon deployments."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    ctx.obj["json_output"] = json_output
    configure_logging(level=verbosity_to_level(verbose), json_output=json_output)


cli.add_command(classify)
cli.add_command(config)
cli.add_command(kms)
cli.add_command(plan)
cli.add_command(reconcile)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
