"""Plan commands: render deployments without touching the cluster."""

from __future__ import annotations

import click

from ..errors import CephPlanError
from ..formatters import print_documents, print_json, print_plan_summary
from ..mirror import MirrorPlanBuilder, MirrorSpec
from ..osd import ContainerPipelineBuilder, ExecutionPlan, TopologyClassifier
from ..utils import exit_with_error, get_config, load_osd_properties, load_yaml_file


def build_osd_plans(ctx: click.Context, props_file: str) -> list[ExecutionPlan]:
    """Load, classify and plan every OSD in a properties file."""
    config = get_config(ctx)
    classifier = TopologyClassifier(config.kms)
    builder = ContainerPipelineBuilder(config)
    return [builder.build(classifier.classify(p), p) for p in load_osd_properties(props_file)]


def build_mirror_plan(ctx: click.Context, spec_file: str | None) -> ExecutionPlan:
    spec = MirrorSpec.from_dict(load_yaml_file(spec_file) if spec_file else None)
    return MirrorPlanBuilder(get_config(ctx)).build(spec)


@click.group()
def plan() -> None:
    """Render execution plans as deployments."""
    pass


@plan.command("osd")
@click.argument("props_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--summary", is_flag=True, help="Show the steps of each plan instead of YAML")
@click.pass_context
def plan_osd(ctx: click.Context, props_file: str, summary: bool) -> None:
    """Plan OSD deployments from a properties file."""
    try:
        plans = build_osd_plans(ctx, props_file)
    except CephPlanError as e:
        exit_with_error(ctx, e)

    if ctx.obj["json_output"]:
        print_json([p.to_deployment() for p in plans])
    elif summary:
        print_plan_summary(plans)
    else:
        print_documents([p.to_deployment() for p in plans])


@plan.command("mirror")
@click.option(
    "--spec",
    "spec_file",
    type=click.Path(exists=True, dir_okay=False),
    help="rbd-mirror settings file",
)
@click.pass_context
def plan_mirror(ctx: click.Context, spec_file: str | None) -> None:
    """Plan the rbd-mirror deployment."""
    try:
        mirror_plan = build_mirror_plan(ctx, spec_file)
    except CephPlanError as e:
        exit_with_error(ctx, e)

    if ctx.obj["json_output"]:
        print_json(mirror_plan.to_deployment())
    else:
        print_documents([mirror_plan.to_deployment()])
