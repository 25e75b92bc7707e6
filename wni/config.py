"""TOML-based provisioner configuration.

Loads ~/.wni/defaults.toml (global) and wni.toml (project), merges them, and
resolves the ``[provisioner]`` table into :class:`ProvisionSettings`.

Example wni.toml::

    [provisioner]
    kubeconfig = "~/clusters/dev/auth/kubeconfig"
    credentials = "~/.aws/credentials"
    credential_account = "default"
    resource_tracker_dir = "~/wni"
    image_id = "ami-0123456789abcdef0"
    instance_type = "m5a.large"
    ssh_key = "openshift-dev"
    private_key = "~/.ssh/openshift-dev.pem"
"""

from __future__ import annotations

import dataclasses
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from wni.constants import DEFAULT_CREATE_TIMEOUT, DEFAULT_DESTROY_TIMEOUT
from wni.types import VMSpec

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".wni" / "defaults.toml"
PROJECT_CONFIG_NAME = "wni.toml"
SETTINGS_TABLE = "provisioner"


@dataclass(frozen=True, slots=True)
class ProvisionSettings:
    """Everything a provisioning run needs besides the cluster itself.

    Paths are stored as given; the factory resolves and validates them.

    Args:
        credentials: Cloud credential file (AWS shared credentials, GCP key,
            Azure service principal auth file).
        credential_account: Account selector inside the credential file
            (AWS profile name, GCP project ID, Azure subscription ID).
        resource_tracker_dir: Directory holding the resource tracker file.
        kubeconfig: Kubeconfig of the target cluster. Optional.
        image_id: Windows image to boot.
        instance_type: Machine size.
        ssh_key: Key pair name registered with the provider.
        private_key: Private key used to decrypt the Windows password. Optional.
        create_timeout: Seconds to wait for a machine to come up.
        destroy_timeout: Seconds to wait for a machine to terminate.
        destroy_concurrency: Parallel destroy calls during a bulk destroy.
        ingress_cidr: Source range allowed to reach RDP and WinRM.
        zone: Compute zone (GCP only).
    """

    credentials: str = ""
    credential_account: str = ""
    resource_tracker_dir: str = ""
    kubeconfig: str = ""
    image_id: str = ""
    instance_type: str = ""
    ssh_key: str = ""
    private_key: str = ""
    create_timeout: int = DEFAULT_CREATE_TIMEOUT
    destroy_timeout: int = DEFAULT_DESTROY_TIMEOUT
    destroy_concurrency: int = 1
    ingress_cidr: str = "10.0.0.0/8"
    zone: str = ""

    def __post_init__(self) -> None:
        if self.destroy_concurrency < 1:
            raise ValueError("destroy_concurrency must be at least 1")
        if self.create_timeout <= 0 or self.destroy_timeout <= 0:
            raise ValueError("timeouts must be positive")

    def vm_spec(self) -> VMSpec:
        return VMSpec(
            image_id=self.image_id,
            instance_type=self.instance_type,
            ssh_key=self.ssh_key,
            private_key_path=self.private_key,
        )

    def with_resolved(self, **paths: str) -> ProvisionSettings:
        return dataclasses.replace(self, **paths)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault(SETTINGS_TABLE, {})
    return merged


def build_settings(raw: RawConfig, **overrides: Any) -> ProvisionSettings:
    """Build settings from a raw ``[provisioner]`` table.

    Keyword overrides (e.g. from command-line flags) win over the table;
    ``None`` overrides are ignored.

    Raises:
        ValueError: If the table holds keys ProvisionSettings does not know.
    """
    values = {**raw, **{k: v for k, v in overrides.items() if v is not None}}
    known = {f.name for f in dataclasses.fields(ProvisionSettings)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(
            f"Unknown provisioner settings: {', '.join(unknown)}. "
            f"Valid: {', '.join(sorted(known))}"
        )
    return ProvisionSettings(**values)


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    **overrides: Any,
) -> ProvisionSettings:
    config = load_config(project_dir=project_dir, global_path=global_path)
    return build_settings(config[SETTINGS_TABLE], **overrides)
