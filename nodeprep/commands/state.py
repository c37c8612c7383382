from enum import Enum

import typer

from nodeprep.config import NodePrepConfig
from nodeprep.modules.provision.errors import NodePrepError
from nodeprep.modules.provision.models import Provisioner
from nodeprep.modules.provision.state import CheckpointStore, MarkerStore, RunLock

app = typer.Typer()


class ResetTarget(str, Enum):
    runtime = "runtime"
    tools = "tools"
    all = "all"


def _config(ctx: typer.Context) -> NodePrepConfig:
    return ctx.obj if isinstance(ctx.obj, NodePrepConfig) else NodePrepConfig.load()


@app.command("show")
def show_state(ctx: typer.Context):
    """Show completion markers and saved progress for each provisioner."""
    config = _config(ctx)
    markers = MarkerStore(config.marker_dir)
    store = CheckpointStore(config.checkpoint_dir)

    typer.echo(f"State directory: {config.state_dir}")
    for provisioner in Provisioner:
        name = provisioner.value
        typer.echo(f"\n{name}:")
        marker = markers.read(name)
        if marker:
            version = f" (version {marker.version})" if marker.version else ""
            typer.echo(f"  ✅ completed at {marker.completed_at}{version}")
        elif markers.exists(name):
            typer.echo(f"  ⚠️  invalid completion marker at {markers.path(name)}")
        else:
            typer.echo("  not completed")

        checkpoint = store.load(name)
        if checkpoint is None:
            continue
        typer.echo(f"  state: {checkpoint.state.value}")
        if checkpoint.completed_steps:
            typer.echo(f"  completed steps: {', '.join(checkpoint.completed_steps)}")
        if checkpoint.failed_step:
            typer.echo(f"  ❌ failed step: {checkpoint.failed_step} ({checkpoint.error})")


@app.command("reset")
def reset_state(
    ctx: typer.Context,
    target: ResetTarget = typer.Argument(ResetTarget.all, help="Provisioner to reset"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Forget saved progress and completion markers.

    Host changes already made are left in place; the next run re-applies
    every step.
    """
    config = _config(ctx)
    names = [p.value for p in Provisioner] if target == ResetTarget.all else [target.value]

    if not yes:
        typer.confirm(f"Reset provisioning state for {', '.join(names)}?", abort=True)

    markers = MarkerStore(config.marker_dir)
    store = CheckpointStore(config.checkpoint_dir)
    try:
        with RunLock(config.lock_path):
            for name in names:
                cleared = store.clear(name)
                removed = markers.remove(name)
                if cleared or removed:
                    typer.echo(f"✅ Reset {name}")
                else:
                    typer.echo(f"{name}: nothing to reset")
    except NodePrepError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=e.exit_code)
