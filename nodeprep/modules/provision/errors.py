"""Error taxonomy for node provisioning.

Every error carries a distinct process exit code so calling automation can
branch on the failure class without parsing text, and a remediation hint
that the CLI prints next to the message.
"""

from typing import Iterable, Optional


class NodePrepError(Exception):
    """Base class for all provisioning errors."""

    exit_code: int = 1
    remediation: str = ""

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation


class ConfigurationError(NodePrepError):
    """Raised when the configuration cannot be loaded or is invalid."""
    exit_code = 3
    remediation = "Fix the configuration file or NODEPREP_* environment variables."


class PreflightError(NodePrepError):
    """Base class for precondition failures detected before any mutation."""


class PrivilegeError(PreflightError):
    exit_code = 10
    remediation = "Run the command as root, e.g. with sudo."


class MissingDependencyError(PreflightError):
    exit_code = 11

    def __init__(self, dependency: str, message: Optional[str] = None):
        self.dependency = dependency
        super().__init__(
            message or f"The {dependency} provisioner has not completed on this host",
            remediation=f"Run 'nodeprep {dependency} install' first.",
        )


class UnsupportedPlatformError(PreflightError):
    """Raised for an unsupported OS or CPU architecture."""


class UnsupportedOSError(UnsupportedPlatformError):
    exit_code = 12
    remediation = "Use a supported Ubuntu release."

    def __init__(self, detected: str, message: Optional[str] = None):
        self.detected = detected
        super().__init__(message or f"Unsupported operating system: {detected or 'unknown'}")


class UnsupportedArchitectureError(UnsupportedPlatformError):
    exit_code = 13
    remediation = "Supported architectures are x86_64 (amd64) and aarch64 (arm64)."

    def __init__(self, detected: str):
        self.detected = detected
        super().__init__(f"Unsupported architecture: {detected or 'unknown'}")


class MissingCommandError(PreflightError):
    exit_code = 14

    def __init__(self, commands: Iterable[str]):
        self.commands = sorted(commands)
        super().__init__(
            f"Required commands not found in PATH: {', '.join(self.commands)}",
            remediation="Install the missing commands and retry.",
        )


class RunInProgressError(PreflightError):
    exit_code = 15

    def __init__(self, lock_path: str, pid: Optional[int] = None):
        self.lock_path = lock_path
        self.pid = pid
        owner = f" (pid {pid})" if pid else ""
        super().__init__(
            f"Another provisioning run{owner} holds {lock_path}",
            remediation="Wait for the other run to finish before starting a new one.",
        )


class VersionResolutionError(NodePrepError):
    exit_code = 20
    remediation = "Check network access or pin a version explicitly with --version."


class PackageInstallError(NodePrepError):
    exit_code = 21

    def __init__(self, packages: Iterable[str], message: Optional[str] = None, detail: str = ""):
        self.packages = list(packages)
        self.detail = detail.strip()
        message = message or f"Failed to install package(s): {', '.join(self.packages)}"
        if self.detail:
            message = f"{message}\n{self.detail}"
        super().__init__(
            message,
            remediation="Inspect the apt output above and the package repository configuration.",
        )


class ConfigVerificationError(NodePrepError):
    exit_code = 22

    def __init__(self, path: str, setting: str):
        self.path = path
        self.setting = setting
        super().__init__(
            f"Could not confirm '{setting}' in {path} after writing it",
            remediation=f"Inspect {path} and set '{setting}' manually.",
        )


class ServiceNotActiveError(NodePrepError):
    exit_code = 23

    def __init__(self, service: str, state: str = "inactive"):
        self.service = service
        self.state = state
        super().__init__(
            f"Service {service} is not active (state: {state})",
            remediation=f"Check the service logs with 'journalctl -u {service}'.",
        )


class FilesystemWriteError(NodePrepError):
    exit_code = 24

    def __init__(self, path: str, cause: Exception):
        self.path = path
        super().__init__(
            f"Failed to write {path}: {cause}",
            remediation=f"Check permissions and free space for {path}.",
        )


class CommandError(NodePrepError):
    exit_code = 25

    def __init__(self, argv, returncode: Optional[int], stderr: str = "", timed_out: bool = False):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        command = " ".join(self.argv)
        if timed_out:
            message = f"Command timed out: {command}"
        else:
            message = f"Command failed with exit code {returncode}: {command}"
        if stderr:
            message += f"\n{stderr.strip()}"
        super().__init__(message, remediation="Inspect the command output and retry.")


class DownloadError(NodePrepError):
    exit_code = 26
    remediation = "Check network access to the release host and retry."


class StepError(NodePrepError):
    """A provisioning step failed; wraps the underlying cause."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        if isinstance(cause, NodePrepError):
            self.exit_code = cause.exit_code
            remediation = cause.remediation
        else:
            remediation = "Inspect the logs, fix the cause and re-run to resume."
        super().__init__(f"Step '{step}' failed: {cause}", remediation=remediation)
