"""CLI output formatting helpers."""

import json
from typing import Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from .config import PlannerConfig
from .osd.plan import ExecutionPlan


def print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def print_documents(documents: list[dict[str, Any]]) -> None:
    """Print objects as multi-document YAML."""
    click.echo(yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False), nl=False)


def print_config(config: PlannerConfig) -> None:
    """Print config values with where each one came from."""
    data = config.to_dict()
    kms = data.pop("kms")
    click.echo("cephplan configuration\n")
    for key, value in data.items():
        click.echo(f"  {key}: {value}  ({config.get_source(key)})")
    click.echo(f"\n  kms ({config.get_source('kms')}):")
    for key, value in kms.items():
        click.echo(f"    {key}: {value}")


def print_plan_summary(plans: list[ExecutionPlan]) -> None:
    """Print the steps of each plan as a table."""
    console = Console()
    for plan in plans:
        table = Table(title=f"{plan.name} ({plan.namespace})")
        table.add_column("#", justify="right")
        table.add_column("Step")
        table.add_column("Command")
        table.add_column("Mounts")

        for index, step in enumerate((*plan.steps, plan.daemon), 1):
            if step.command[:2] == ("/bin/bash", "-c"):
                command = "bash script"
            else:
                command = " ".join(step.command[:1] + step.args[:3])
            table.add_row(str(index), step.name, command, ", ".join(step.mount_names()))

        console.print(table)
        console.print(
            f"hostPID={plan.host_pid} hostIPC={plan.host_ipc} hostNetwork={plan.host_network}"
        )
