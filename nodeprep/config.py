"""Configuration management for nodeprep.

Configuration is assembled from the following sources, later ones winning:
1. Default values
2. The configuration file (explicit path or the first existing default path)
3. Environment variables ``NODEPREP_<SECTION>__<FIELD>``, then a ``.env``
   file in the working directory
4. Explicit overrides passed by the CLI

List and mapping fields set from the environment take JSON, e.g.
``NODEPREP_TOOLING__PACKAGES='["kubelet", "kubeadm"]'``.
"""
import logging
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, InitSettingsSource, SettingsConfigDict, SettingsError

from nodeprep.modules.provision.errors import ConfigurationError

logger = logging.getLogger("nodeprep.config")

ENV_PREFIX = "NODEPREP_"

# Values of the configuration file being loaded; a settings source below the environment
_file_values: ContextVar[Dict[str, Any]] = ContextVar("nodeprep_file_values", default={})

DEFAULT_CONFIG_PATHS = [
    Path("/etc/nodeprep/config.yaml"),
    Path("~/.config/nodeprep/config.yaml"),
    Path("nodeprep.yaml"),
]


def _split_list(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class HostConfig(BaseModel):
    """Host requirements checked before provisioning."""
    model_config = ConfigDict(extra="ignore")

    supported_os: str = Field(default="ubuntu", description="Only supported distribution id")
    min_os_version: str = Field(default="20.04", description="Minimum distribution version")
    os_release_path: str = "/etc/os-release"
    architectures: Dict[str, str] = Field(
        default_factory=lambda: {
            "x86_64": "amd64",
            "amd64": "amd64",
            "aarch64": "arm64",
            "arm64": "arm64",
        },
        description="Raw machine string to package platform tag",
    )
    required_commands: List[str] = Field(
        default_factory=lambda: ["modprobe", "sysctl", "systemctl"],
    )

    @field_validator("required_commands", mode="before")
    @classmethod
    def split_commands(cls, v: Any) -> Any:
        return _split_list(v)


class RuntimeConfig(BaseModel):
    """Container runtime (containerd) provisioning settings."""
    model_config = ConfigDict(extra="ignore")

    source: Literal["package", "release"] = Field(
        default="package",
        description="Install containerd from OS packages or from upstream release binaries",
    )
    package: str = "containerd"
    containerd_version: Optional[str] = None
    runc_version: Optional[str] = None
    containerd_release_api: str = "https://api.github.com/repos/containerd/containerd/releases/latest"
    runc_release_api: str = "https://api.github.com/repos/opencontainers/runc/releases/latest"
    containerd_download_url: str = (
        "https://github.com/containerd/containerd/releases/download/"
        "v{version}/containerd-{version}-linux-{platform}.tar.gz"
    )
    runc_download_url: str = (
        "https://github.com/opencontainers/runc/releases/download/v{version}/runc.{platform}"
    )
    service_unit_url: str = "https://raw.githubusercontent.com/containerd/containerd/main/containerd.service"
    service_unit_path: str = "/usr/lib/systemd/system/containerd.service"
    install_prefix: str = "/usr/local"
    download_dir: str = "/var/cache/nodeprep"
    runc_path: str = "/usr/local/sbin/runc"
    config_template: Literal["default", "minimal"] = Field(
        default="default",
        description="'default' uses 'containerd config default', 'minimal' a hand-authored file",
    )
    config_path: str = "/etc/containerd/config.toml"
    service_name: str = "containerd"
    socket_path: str = "/run/containerd/containerd.sock"
    modules: List[str] = Field(default_factory=lambda: ["overlay", "br_netfilter"])
    modules_load_path: str = "/etc/modules-load.d/containerd.conf"
    sysctl_path: str = "/etc/sysctl.d/99-kubernetes-cri.conf"
    sysctl: Dict[str, str] = Field(
        default_factory=lambda: {
            "net.bridge.bridge-nf-call-iptables": "1",
            "net.ipv4.ip_forward": "1",
            "net.bridge.bridge-nf-call-ip6tables": "1",
        }
    )
    disable_runc_apparmor: bool = Field(
        default=False,
        description="Disable the runc AppArmor profile. Reduces container isolation.",
    )
    apparmor_profile: str = "/etc/apparmor.d/runc"
    apparmor_disable_dir: str = "/etc/apparmor.d/disable"
    service_timeout: int = Field(default=30, ge=1)
    service_poll_interval: float = Field(default=1.0, ge=0)

    @field_validator("modules", mode="before")
    @classmethod
    def split_modules(cls, v: Any) -> Any:
        return _split_list(v)


class ToolingConfig(BaseModel):
    """Kubernetes tooling (kubelet, kubeadm, kubectl) provisioning settings."""
    model_config = ConfigDict(extra="ignore")

    version: Optional[str] = Field(default=None, description="Explicit version; latest stable when unset")
    release_url: str = "https://dl.k8s.io/release/stable.txt"
    pin_packages: bool = True
    package_revision: str = "1.1"
    repo_base_url: str = "https://pkgs.k8s.io/core:/stable:"
    keyring_path: str = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
    sources_list_path: str = "/etc/apt/sources.list.d/kubernetes.list"
    prerequisites: List[str] = Field(
        default_factory=lambda: ["apt-transport-https", "ca-certificates", "curl", "gpg"]
    )
    packages: List[str] = Field(default_factory=lambda: ["kubelet", "kubeadm", "kubectl"])
    crictl_config_path: str = "/etc/crictl.yaml"
    fstab_path: str = "/etc/fstab"
    swaps_path: str = "/proc/swaps"

    @field_validator("prerequisites", "packages", mode="before")
    @classmethod
    def split_packages(cls, v: Any) -> Any:
        return _split_list(v)

    @field_validator("version", mode="before")
    @classmethod
    def empty_version_is_latest(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class NetworkConfig(BaseModel):
    """Timeouts and retries for network calls."""
    model_config = ConfigDict(extra="ignore")

    timeout: float = Field(default=10.0, gt=0)
    retries: int = Field(default=3, ge=1)
    backoff: float = Field(default=1.0, ge=0)
    max_backoff: float = Field(default=10.0, ge=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(extra="ignore")

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    file: Optional[str] = Field(default=None, description="Path to log file (console only if unset)")
    max_size_mb: int = 10
    backup_count: int = 5


class NodePrepConfig(BaseSettings):
    """nodeprep configuration."""
    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    state_dir: str = "/var/lib/nodeprep"
    host: HostConfig = Field(default_factory=HostConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    tooling: ToolingConfig = Field(default_factory=ToolingConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def checkpoint_dir(self) -> Path:
        return Path(self.state_dir) / "checkpoints"

    @property
    def marker_dir(self) -> Path:
        return Path(self.state_dir) / "markers"

    @property
    def lock_path(self) -> Path:
        return Path(self.state_dir) / "run.lock"

    def marker_path(self, provisioner: str) -> Path:
        return self.marker_dir / f"{provisioner}.json"

    def checkpoint_path(self, provisioner: str) -> Path:
        return self.checkpoint_dir / f"{provisioner}.json"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            InitSettingsSource(settings_cls, init_kwargs=_file_values.get()),
            file_secret_settings,
        )

    @classmethod
    def load(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> 'NodePrepConfig':
        """Load configuration from file, environment and explicit overrides."""
        config_data: Dict[str, Any] = {}

        if config_path:
            path = Path(config_path).expanduser().absolute()
            if not path.exists():
                raise ConfigurationError(f"Configuration file not found: {path}")
            config_data = cls._load_config_file(path)
        else:
            for path in DEFAULT_CONFIG_PATHS:
                path = path.expanduser().absolute()
                if path.exists():
                    config_data = cls._load_config_file(path)
                    break

        token = _file_values.set(config_data)
        try:
            return cls(**(overrides or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        except SettingsError as e:
            raise ConfigurationError(f"Invalid environment configuration: {e}") from e
        finally:
            _file_values.reset(token)

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        logger.debug("Loading configuration from %s", path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid config format in {path}: expected a mapping")
        return data


def merge_dicts(base: Dict[Any, Any], override: Dict[Any, Any]) -> Dict[Any, Any]:
    """Recursively merge two dictionaries; ``override`` wins."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_dicts(result[key], value)
        else:
            result[key] = value
    return result

