import logging
from pathlib import Path
from typing import Optional

import typer

from nodeprep.commands import runtime, state, tools
from nodeprep.config import NodePrepConfig
from nodeprep.logging import setup_logging
from nodeprep.modules.provision.errors import ConfigurationError

app = typer.Typer(help="Prepare an Ubuntu host for Kubernetes membership.")

# Add all command groups
app.add_typer(runtime.app, name="runtime", help="Container runtime (containerd) provisioning")
app.add_typer(tools.app, name="tools", help="Kubernetes tools (kubelet, kubeadm, kubectl) provisioning")
app.add_typer(state.app, name="state", help="Inspect or reset provisioning state")


# Global options callback
@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a nodeprep YAML configuration file"
    ),
):
    """nodeprep - Kubernetes node provisioning CLI."""
    try:
        config = NodePrepConfig.load(config_path)
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=e.exit_code)

    setup_logging(
        level=config.logging.level,
        debug=debug,
        log_file=config.logging.file,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count,
    )
    if debug:
        logging.getLogger("nodeprep").debug("Debug mode enabled")
    ctx.obj = config


if __name__ == "__main__":
    app()
