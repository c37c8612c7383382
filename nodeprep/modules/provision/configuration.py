"""Generated system file contents.

Static files (kernel module list, sysctl parameters, the minimal containerd
configuration and the apt sources list) are rendered from the Jinja2
templates shipped in ``templates/``. The helpers below edit existing
content in place: the containerd cgroup driver setting, swap entries in the
mount table and the crictl client configuration.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

import yaml
from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)

from .errors import ConfigurationError

logger = logging.getLogger("nodeprep.configuration")

SYSTEMD_CGROUP_RE = re.compile(r'^(?P<indent>[ \t]*)SystemdCgroup[ \t]*=[ \t]*(?P<value>\w+)[ \t]*$', re.M)
SYSTEMD_CGROUP_ENABLED_RE = re.compile(r'^[ \t]*SystemdCgroup[ \t]*=[ \t]*true[ \t]*$', re.M)
RUNC_OPTIONS_RE = re.compile(r'^(?P<indent>[ \t]*)\[plugins\..*\.runtimes\.runc\.options\][ \t]*$', re.M)


def get_template_path() -> str:
    """Get the absolute path to the templates directory."""
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')


def render_template(name: str, **context: Any) -> str:
    """Render one of the bundled templates."""
    env = Environment(
        loader=FileSystemLoader(get_template_path()),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    try:
        return env.get_template(name).render(**context)
    except TemplateNotFound as e:
        raise ConfigurationError(f"Template not found: {e}") from e
    except TemplateSyntaxError as e:
        raise ConfigurationError(f"Template syntax error in {name}: {e}") from e
    except UndefinedError as e:
        raise ConfigurationError(f"Missing template variable in {name}: {e}") from e


def render_modules_load(modules: List[str]) -> str:
    return render_template('modules-load.conf.j2', modules=modules)


def render_sysctl(params: Dict[str, str]) -> str:
    return render_template('sysctl.conf.j2', params=params)


def render_minimal_containerd_config() -> str:
    return render_template('containerd-config.toml.j2', systemd_cgroup=True)


def render_sources_list(keyring_path: str, repo_url: str) -> str:
    return render_template('kubernetes.list.j2', keyring_path=keyring_path, repo_url=repo_url)


def repository_url(base_url: str, line: str) -> str:
    """``https://pkgs.k8s.io/core:/stable:/v1.31/deb/`` for line ``v1.31``."""
    return f"{base_url.rstrip('/')}/{line}/deb/"


def ensure_systemd_cgroup(text: str) -> str:
    """Return containerd config ``text`` with the systemd cgroup driver enabled.

    Existing ``SystemdCgroup`` settings are forced to ``true``. If the key is
    absent it is added under the runc options table. Content without a runc
    options table is returned unchanged and fails verification afterwards.
    """
    if SYSTEMD_CGROUP_RE.search(text):
        return SYSTEMD_CGROUP_RE.sub(lambda m: f"{m.group('indent')}SystemdCgroup = true", text)

    match = RUNC_OPTIONS_RE.search(text)
    if not match:
        logger.warning("No runc options table found in the containerd configuration")
        return text
    indent = match.group('indent') + '  '
    return f"{text[:match.end()]}\n{indent}SystemdCgroup = true{text[match.end():]}"


def has_systemd_cgroup(text: str) -> bool:
    """True when every ``SystemdCgroup`` setting in ``text`` is ``true``."""
    values = [m.group('value') for m in SYSTEMD_CGROUP_RE.finditer(text or '')]
    return bool(values) and all(v == 'true' for v in values)


def comment_swap_entries(fstab: str) -> Tuple[str, List[str]]:
    """Comment out active swap entries of a mount table.

    Already commented lines are left alone, so applying this twice yields
    the same content.

    Returns:
        tuple: (new content, list of entries that were commented)
    """
    lines = fstab.splitlines(keepends=True)
    commented: List[str] = []
    for i, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue
        fields = stripped.split()
        if len(fields) >= 3 and fields[2] == 'swap':
            lines[i] = '#' + line
            commented.append(stripped)
    return ''.join(lines), commented


def active_swaps(proc_swaps: Optional[str]) -> List[str]:
    """Devices listed in ``/proc/swaps`` (the first line is a header)."""
    if not proc_swaps:
        return []
    lines = [line for line in proc_swaps.splitlines() if line.strip()]
    return [line.split()[0] for line in lines[1:]]


def render_crictl_config(existing: Optional[str], endpoint: str) -> str:
    """Merge the runtime and image endpoints into a crictl.yaml document."""
    data: Dict[str, Any] = {}
    if existing:
        try:
            loaded = yaml.safe_load(existing)
        except yaml.YAMLError as e:
            logger.warning("Replacing unparsable crictl configuration: %s", e)
            loaded = None
        if isinstance(loaded, dict):
            data = loaded
    data['runtime-endpoint'] = endpoint
    data['image-endpoint'] = endpoint
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def crictl_endpoint(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict):
        return None
    return data.get('runtime-endpoint')
