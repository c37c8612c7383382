"""CLI command groups."""
import typer
from pydantic import ValidationError

from nodeprep.config import NodePrepConfig, merge_dicts
from nodeprep.modules.provision.errors import ConfigurationError, NodePrepError
from nodeprep.modules.provision.models import RunReport


def configure(ctx: typer.Context, overrides: dict) -> NodePrepConfig:
    """Apply CLI overrides on top of the configuration loaded by the callback."""
    config = ctx.obj if isinstance(ctx.obj, NodePrepConfig) else NodePrepConfig.load()
    overrides = {
        section: {k: v for k, v in values.items() if v is not None}
        for section, values in overrides.items()
    }
    data = merge_dicts(config.model_dump(), overrides)
    try:
        return NodePrepConfig(**data)
    except ValidationError as e:
        typer.echo(f"❌ Invalid option: {e}", err=True)
        raise typer.Exit(code=ConfigurationError.exit_code)


def exit_on_failure(report: RunReport) -> None:
    """Print the failure and exit with the error's code."""
    if report.ok:
        return
    error = report.error or NodePrepError(f"{report.provisioner} provisioning did not complete")
    typer.echo(f"❌ {error}", err=True)
    if error.remediation:
        typer.echo(f"👉 {error.remediation}", err=True)
    if report.failed_step:
        typer.echo("Completed steps are kept; re-run the same command to resume.", err=True)
    raise typer.Exit(code=error.exit_code)


__all__ = ['configure', 'exit_on_failure']
