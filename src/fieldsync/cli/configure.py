"""Configure command for the fieldsync CLI.

Commands:
- configure: Set the remote database and device settings
"""

from __future__ import annotations

import sys

import click

from fieldsync.cli import config as cli_config


@click.command()
@click.option("--database-url", default=None, help="Remote database URL (https://...).")
@click.option("--auth-token", default=None, help="Credential passed to the remote database.")
@click.option("--root-path", default=None, help="Prefix for every remote address.")
@click.option("--device-id", default=None, help="Override the generated device id.")
@click.option("--show", is_flag=True, help="Print the current configuration.")
def configure(
    database_url: str | None,
    auth_token: str | None,
    root_path: str | None,
    device_id: str | None,
    show: bool,
) -> None:
    """Set the remote database and device settings.

    Options left out keep their current value.
    """
    config = cli_config.load_config()

    if database_url is not None:
        if not database_url.startswith(("http://", "https://")):
            click.echo("Error: Database URL must start with http:// or https://", err=True)
            sys.exit(1)
        config["database_url"] = database_url.rstrip("/")
    if auth_token is not None:
        config["auth_token"] = auth_token
    if root_path is not None:
        config["root_path"] = root_path.strip("/")
    if device_id is not None:
        config["device_id"] = device_id

    changed = any(v is not None for v in (database_url, auth_token, root_path, device_id))
    if changed:
        cli_config.save_config(config)
        click.echo(f"Configuration saved to {cli_config.get_config_file()}")

    if show or not changed:
        for key in sorted(config):
            value = "********" if key == "auth_token" else config[key]
            click.echo(f"{key}: {value}")
