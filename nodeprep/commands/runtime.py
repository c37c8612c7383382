from enum import Enum
from typing import Optional

import typer

from nodeprep.commands import configure, exit_on_failure
from nodeprep.modules.provision.host import LocalHost
from nodeprep.modules.provision.models import Provisioner
from nodeprep.modules.provision.runner import run_provisioner

app = typer.Typer()


class RuntimeSource(str, Enum):
    package = "package"
    release = "release"


@app.command("install")
def install_runtime(
    ctx: typer.Context,
    source: Optional[RuntimeSource] = typer.Option(
        None, "--source", "-s", help="Install containerd from OS packages or upstream release binaries"
    ),
    containerd_version: Optional[str] = typer.Option(
        None, "--containerd-version", help="containerd release to install (release source only)"
    ),
    disable_runc_apparmor: Optional[bool] = typer.Option(
        None,
        "--disable-runc-apparmor/--keep-runc-apparmor",
        help="Disable the runc AppArmor profile. WARNING: reduces container isolation.",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Discard saved progress and run every step"),
):
    """
    Install and configure containerd as the Kubernetes container runtime.

    Completed steps are checkpointed; re-running after a failure resumes at
    the first incomplete step.
    """
    config = configure(ctx, {
        "runtime": {
            "source": source.value if source else None,
            "containerd_version": containerd_version,
            "disable_runc_apparmor": disable_runc_apparmor,
        },
    })

    typer.echo(f"🚀 Provisioning the container runtime ({config.runtime.source})")
    report = run_provisioner(Provisioner.RUNTIME, config, LocalHost(), force=force)
    exit_on_failure(report)

    if not report.executed:
        typer.echo("✅ Container runtime already provisioned, nothing to do")
        return
    version = report.values.get("version") or "unknown version"
    typer.echo(f"✅ containerd ({version}) is installed and running")
    typer.echo(f"   Completion marker: {config.marker_path(Provisioner.RUNTIME.value)}")
    typer.echo("   The host is ready for 'nodeprep tools install'.")
