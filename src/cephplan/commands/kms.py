"""Key-management commands."""

from __future__ import annotations

import click

from ..errors import CephPlanError
from ..formatters import print_json
from ..kms import VaultKeyClient, VaultSettings
from ..osd.keyflow import EncryptionKeyFlow
from ..osd.topology import KeySource
from ..utils import exit_with_error, get_config


@click.group()
def kms() -> None:
    """Key-management service operations."""
    pass


@kms.command("get-kek")
@click.argument("kek_name")
@click.argument("key_path", type=click.Path(dir_okay=False))
@click.option("--timeout", default=30.0, type=float, help="Request timeout in seconds")
@click.pass_context
def get_kek(ctx: click.Context, kek_name: str, key_path: str, timeout: float) -> None:
    """Fetch a key encryption key from Vault into KEY_PATH.

    Connection details come from the VAULT_* environment variables. The key
    is written with mode 0600; nothing is left at KEY_PATH on failure.
    """
    try:
        config = get_config(ctx)
        settings = VaultSettings.from_env()
        flow = EncryptionKeyFlow(
            key_source=KeySource.remote_kms(config.kms.provider or "vault", config.kms.auth_method),
            key_path=key_path,
            fetcher=VaultKeyClient(settings, timeout=timeout),
        )
        path = flow.request(kek_name)
    except CephPlanError as e:
        exit_with_error(ctx, e)

    if ctx.obj["json_output"]:
        print_json({"kek": kek_name, "path": str(path)})
    else:
        click.echo(f"Key '{kek_name}' written to {path}")
