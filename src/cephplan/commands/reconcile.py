"""Reconcile commands: converge live deployments to their plans."""

from __future__ import annotations

import click

from ..errors import CephPlanError
from ..formatters import print_json
from ..mirror import RBD_MIRROR_CLASS
from ..osd.pipeline import APP_NAME as OSD_APP_NAME
from ..reconcile import (
    CephAuthClient,
    DaemonClass,
    DeploymentReconciler,
    KubectlClusterClient,
    ReconcileResult,
)
from ..utils import exit_with_error, get_config
from .plan import build_mirror_plan, build_osd_plans

OSD_CLASS = DaemonClass(app=OSD_APP_NAME)


def make_reconciler(ctx: click.Context) -> DeploymentReconciler:
    config = get_config(ctx)
    return DeploymentReconciler(
        cluster=KubectlClusterClient(config.namespace, kubeconfig=config.kubeconfig),
        credentials=CephAuthClient.from_config(config),
    )


def report(ctx: click.Context, results: list[ReconcileResult]) -> None:
    if ctx.obj["json_output"]:
        print_json([r.to_dict() for r in results])
        return

    for result in results:
        click.echo(f"{result.name}: {result.action.value} (was {result.initial_state.value})")
        for name in result.cleanup.deleted:
            click.echo(f"  removed {name}")
        for entity in result.cleanup.credentials_removed:
            click.echo(f"  removed credential {entity}")
        for warning in result.warnings:
            click.echo(f"Warning: {warning.message}", err=True)


@click.group()
def reconcile() -> None:
    """Converge live deployments to their plans."""
    pass


@reconcile.command("osd")
@click.argument("props_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def reconcile_osd(ctx: click.Context, props_file: str) -> None:
    """Create, update or recreate OSD deployments."""
    try:
        plans = build_osd_plans(ctx, props_file)
        reconciler = make_reconciler(ctx)
        results = [reconciler.reconcile(p, OSD_CLASS) for p in plans]
    except CephPlanError as e:
        exit_with_error(ctx, e)
    report(ctx, results)


@reconcile.command("mirror")
@click.option(
    "--spec",
    "spec_file",
    type=click.Path(exists=True, dir_okay=False),
    help="rbd-mirror settings file",
)
@click.pass_context
def reconcile_mirror(ctx: click.Context, spec_file: str | None) -> None:
    """Converge the rbd-mirror deployment and remove legacy instances."""
    try:
        mirror_plan = build_mirror_plan(ctx, spec_file)
        result = make_reconciler(ctx).reconcile(mirror_plan, RBD_MIRROR_CLASS)
    except CephPlanError as e:
        exit_with_error(ctx, e)
    report(ctx, [result])
