"""Centralized constants and enums for wni.

Resource names, tag keys, instance states and timeouts shared by the
drivers and the resource ledger.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Resource Tracker
# =============================================================================

TRACKER_FILE_NAME: Final = "windows-node-installer.json"
LEDGER_INSTANCE_KEY: Final = "InstanceIDs"
LEDGER_SECURITY_GROUP_KEY: Final = "SecurityGroupIDs"
TRACKER_FILE_MODE: Final = 0o644


# =============================================================================
# Resource Naming
# =============================================================================

WINDOWS_WORKER_SUFFIX: Final = "windows-worker"
CLUSTER_TAG_PREFIX: Final = "kubernetes.io/cluster/"
CLUSTER_TAG_OWNED: Final = "owned"


def windows_worker_name(infrastructure_name: str) -> str:
    """Common prefix for every Windows worker resource of a cluster."""
    return f"{infrastructure_name}-{WINDOWS_WORKER_SUFFIX}"


def cluster_tag_key(infrastructure_name: str) -> str:
    return f"{CLUSTER_TAG_PREFIX}{infrastructure_name}"


# =============================================================================
# Windows Access Ports
# =============================================================================

RDP_PORT: Final = 3389
WINRM_HTTPS_PORT: Final = 5986
WINDOWS_ADMIN_USER: Final = "Administrator"
# Azure rejects "Administrator" and "admin" as VM admin names.
AZURE_ADMIN_USER: Final = "core"


# =============================================================================
# EC2 Instance States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    RUNNING = "running"
    STOPPED = "stopped"
    PENDING = "pending"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    SHUTTING_DOWN = "shutting-down"


# States in which an EC2 instance still holds on to its security groups.
LIVE_INSTANCE_STATES: Final = (
    InstanceState.PENDING,
    InstanceState.RUNNING,
    InstanceState.SHUTTING_DOWN,
    InstanceState.STOPPING,
    InstanceState.STOPPED,
)


# =============================================================================
# Timeouts (in seconds)
# =============================================================================

DEFAULT_CREATE_TIMEOUT: Final = 600
DEFAULT_DESTROY_TIMEOUT: Final = 600
WAITER_DELAY: Final = 5
PASSWORD_POLL_INTERVAL: Final = 15
