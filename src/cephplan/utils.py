"""Utility functions for the CLI."""

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
import yaml

from .config import PlannerConfig, load_config
from .errors import CephPlanError, ValidationError
from .osd.properties import DaemonProperties
from .shared.logging import configure_logging


def load_yaml_file(path: str | Path) -> Any:
    """Load a YAML (or JSON) file.

    Raises:
        ValidationError: If the file cannot be read or parsed
    """
    try:
        with open(path) as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise ValidationError(message=f"Cannot read {path}: {e}", data={"path": str(path)})
    except yaml.YAMLError as e:
        raise ValidationError(message=f"Invalid YAML in {path}: {e}", data={"path": str(path)})


def load_osd_properties(path: str | Path) -> list[DaemonProperties]:
    """Load OSD properties from a file.

    Accepts a single mapping, a list of mappings, or a mapping with an
    `osds` list.

    Raises:
        ValidationError: If any entry is invalid
    """
    data = load_yaml_file(path)
    if isinstance(data, dict) and "osds" in data:
        data = data["osds"]
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not data:
        raise ValidationError(message=f"{path}: expected one or more OSD property mappings")

    props = [DaemonProperties.from_dict(entry) for entry in data]
    ids = [p.osd_id for p in props]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ValidationError(
            message=f"{path}: duplicate osd_id {', '.join(map(str, duplicates))}",
            data={"duplicates": duplicates},
        )
    return props


def get_config(ctx: click.Context) -> PlannerConfig:
    """Load the planner config once per invocation."""
    if ctx.obj.get("config") is None:
        config = load_config(ctx.obj.get("config_path"))
        # -v on the command line beats the configured level
        if not ctx.obj.get("verbose"):
            configure_logging(level=config.log_level, json_output=ctx.obj.get("json_output", False))
        ctx.obj["config"] = config
    return ctx.obj["config"]


def exit_with_error(ctx: click.Context, error: CephPlanError) -> NoReturn:
    """Report an error and exit with status 1."""
    if ctx.obj.get("json_output"):
        click.echo(json.dumps({"error": error.to_dict()}, indent=2, default=str), err=True)
    else:
        click.echo(f"Error: {error.message}", err=True)
    sys.exit(1)
