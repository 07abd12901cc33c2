"""Config commands."""

import click

from ..errors import CephPlanError
from ..formatters import print_config, print_json
from ..utils import exit_with_error, get_config


@click.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration and where each value came from."""
    try:
        planner_config = get_config(ctx)
    except CephPlanError as e:
        exit_with_error(ctx, e)

    if ctx.obj["json_output"]:
        data = planner_config.to_dict()
        sources = {key: planner_config.get_source(key) for key in data}
        print_json({"values": data, "sources": sources})
    else:
        print_config(planner_config)
