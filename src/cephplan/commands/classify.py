"""Classify command."""

import click

from ..errors import CephPlanError
from ..formatters import print_json
from ..osd import TopologyClassifier
from ..utils import exit_with_error, get_config, load_osd_properties


@click.command()
@click.argument("props_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def classify(ctx: click.Context, props_file: str) -> None:
    """Show the storage topology of each OSD in PROPS_FILE."""
    try:
        classifier = TopologyClassifier(get_config(ctx).kms)
        rows = [
            {"osd_id": p.osd_id, **classifier.classify(p).describe()}
            for p in load_osd_properties(props_file)
        ]
    except CephPlanError as e:
        exit_with_error(ctx, e)

    if ctx.obj["json_output"]:
        print_json(rows)
        return

    for row in rows:
        click.echo(f"osd.{row.pop('osd_id')}:")
        for key, value in row.items():
            click.echo(f"  {key}: {value}")
