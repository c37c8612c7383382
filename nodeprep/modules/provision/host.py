"""System effects boundary.

Every probe and mutation a provisioning step performs goes through a
:class:`Host`, so steps can be exercised against an in-memory host in tests
without touching a real machine.
"""

import logging
import os
import platform
import shlex
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from .errors import CommandError, FilesystemWriteError

logger = logging.getLogger("nodeprep.host")

Content = Union[str, bytes]

# Passed as ``timeout`` when a command should use the host's default limit.
DEFAULT_TIMEOUT: Any = object()


@dataclass
class CommandResult:
    """Result of a command executed on the host."""
    argv: Sequence[str]
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Host(ABC):
    """Narrow interface to the host being provisioned."""

    @abstractmethod
    def run(
        self,
        argv: Sequence[str],
        check: bool = True,
        timeout: Optional[int] = DEFAULT_TIMEOUT,
        input: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run a command; raise CommandError on failure when ``check`` is set.

        ``timeout=None`` lets the command run to completion.
        """

    @abstractmethod
    def read_file(self, path: str) -> Optional[str]:
        """Return the file content, or None if it does not exist."""

    @abstractmethod
    def write_file(self, path: str, content: Content, mode: int = 0o644) -> bool:
        """Write ``content`` to ``path``; return True if anything changed."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def is_symlink(self, path: str) -> bool:
        ...

    @abstractmethod
    def symlink(self, target: str, link: str) -> None:
        ...

    @abstractmethod
    def which(self, command: str) -> Optional[str]:
        ...

    @abstractmethod
    def is_root(self) -> bool:
        ...

    @abstractmethod
    def machine(self) -> str:
        """Raw CPU architecture string, e.g. ``x86_64``."""


class LocalHost(Host):
    """Acts on the machine the process runs on."""

    def __init__(self, command_timeout: int = 600):
        self.command_timeout = command_timeout

    def run(self, argv, check=True, timeout=DEFAULT_TIMEOUT, input=None, env=None) -> CommandResult:
        argv = [str(a) for a in argv]
        exec_timeout = self.command_timeout if timeout is DEFAULT_TIMEOUT else timeout
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        logger.debug("Executing (timeout %s): %s", exec_timeout or "none", shlex.join(argv))
        try:
            proc = subprocess.run(
                argv,
                input=input,
                capture_output=True,
                timeout=exec_timeout,
                env=run_env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(argv, None, timed_out=True) from e
        except OSError as e:
            raise CommandError(argv, 127, str(e)) from e

        result = CommandResult(
            argv=argv,
            returncode=proc.returncode,
            stdout=proc.stdout.decode('utf-8', 'replace'),
            stderr=proc.stderr.decode('utf-8', 'replace'),
        )
        logger.debug("Command exited with %d: %s", result.returncode, argv[0])
        if check and not result.ok:
            raise CommandError(argv, result.returncode, result.stderr)
        return result

    def read_file(self, path):
        try:
            return Path(path).read_text(encoding='utf-8')
        except FileNotFoundError:
            return None

    def write_file(self, path, content, mode=0o644):
        target = Path(path)
        data = content.encode('utf-8') if isinstance(content, str) else content
        try:
            if target.is_file() and target.read_bytes() == data:
                if (target.stat().st_mode & 0o777) == mode:
                    logger.debug("%s is up to date", path)
                    return False
                os.chmod(target, mode)
                return True

            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.chmod(tmp_path, mode)
                os.replace(tmp_path, target)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise FilesystemWriteError(str(path), e) from e
        logger.debug("Wrote %s (mode %o)", path, mode)
        return True

    def exists(self, path):
        return os.path.lexists(path)

    def is_symlink(self, path):
        return os.path.islink(path)

    def symlink(self, target, link):
        try:
            Path(link).parent.mkdir(parents=True, exist_ok=True)
            os.symlink(target, link)
        except OSError as e:
            raise FilesystemWriteError(str(link), e) from e

    def which(self, command):
        return shutil.which(command)

    def is_root(self):
        return os.geteuid() == 0

    def machine(self):
        return platform.machine()
