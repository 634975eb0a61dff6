import asyncio
import logging
import click
import os
import yaml

from homeport.cli.storage import apply_storage_configuration, storage
from homeport.config.settings import config as settings

@click.group()
@click.option("--log-level", default=settings.log_level, show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging verbosity.")
@click.version_option(package_name="homeport")
@click.pass_context
def main(ctx, log_level):
    """Homeport CLI"""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

main.add_command(storage)

@main.command()
@click.option("--config", help="Path to the configuration file.")
@click.confirmation_option(prompt="All data on the configured devices will be destroyed. Continue?")
def apply(config):
    """Apply the configuration from a file."""
    if config:
        config_path = config
    elif os.path.exists("config.yaml"):
        config_path = "config.yaml"
    elif os.path.exists(os.path.expanduser("~/.config/homeport/config.yaml")):
        config_path = os.path.expanduser("~/.config/homeport/config.yaml")
    elif os.path.exists("/etc/homeport/config.yaml"):
        config_path = "/etc/homeport/config.yaml"
    else:
        raise click.FileError("config.yaml", hint="Configuration file not found.")

    with open(config_path, "r") as f:
        full_config = yaml.safe_load(f) or {}

    if "storage" in full_config:
        from homeport.storage.manager import StorageManager

        tasks = asyncio.run(apply_storage_configuration(StorageManager(), full_config["storage"]))
        for task in tasks:
            click.echo(f"{task.target}: {task.message}")


@main.command()
@click.option('--host', default='127.0.0.1', help='The host to bind to.')
@click.option('--port', default=8000, help='The port to bind to.')
def server(host, port):
    """Run the FastAPI server."""
    import uvicorn

    from homeport.api.server import app
    uvicorn.run(app, host=host, port=port)
