from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from wni.errors import DestroyTimeoutError, NotFoundError
from wni.ledger import ResourceLedger
from wni.paths import tracker_file_path
from wni.types import ProvisionedVM, VMSpec


@dataclass
class FakeDriver:
    """In-memory driver. Instances reference security groups by ID."""

    group_id: str = "sg-1"
    instances: dict[str, tuple[str, ...]] = field(default_factory=dict)
    groups: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)
    timeouts: set[str] = field(default_factory=set)
    failures: dict[str, Exception] = field(default_factory=dict)
    create_error: Exception | None = None
    _counter: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def name(self) -> str:
        return "fake"

    def create_vm(self, spec: VMSpec) -> ProvisionedVM:
        return self._create(spec, public=True)

    def create_vm_private_subnet(self, spec: VMSpec) -> ProvisionedVM:
        return self._create(spec, public=False)

    def _create(self, spec: VMSpec, *, public: bool) -> ProvisionedVM:
        with self._lock:
            self.calls.append(("create", spec.image_id))
            if self.create_error is not None:
                raise self.create_error
            created = () if self.group_id in self.groups else (self.group_id,)
            self.groups.add(self.group_id)
            self._counter += 1
            instance_id = f"i-{self._counter}"
            self.instances[instance_id] = (self.group_id,)
        return ProvisionedVM(
            id=instance_id,
            private_ip=f"10.0.0.{self._counter}",
            public_ip=f"203.0.113.{self._counter}" if public else None,
            security_group_ids=(self.group_id,),
            created_security_group_ids=created,
        )

    def destroy_vm(self, instance_id: str) -> None:
        with self._lock:
            self.calls.append(("destroy", instance_id))
            if instance_id in self.failures:
                raise self.failures[instance_id]
            if instance_id in self.timeouts:
                raise DestroyTimeoutError(instance_id, 1)
            if instance_id not in self.instances:
                raise NotFoundError(instance_id)
            del self.instances[instance_id]

    def security_group_in_use(self, group_id: str) -> bool:
        with self._lock:
            self.calls.append(("in_use", group_id))
            return any(group_id in groups for groups in self.instances.values())

    def delete_security_group(self, group_id: str) -> None:
        with self._lock:
            self.calls.append(("delete_sg", group_id))
            if group_id in self.failures:
                raise self.failures[group_id]
            if group_id not in self.groups:
                raise NotFoundError(group_id)
            self.groups.discard(group_id)


@pytest.fixture
def tracker_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "tracker"
    directory.mkdir()
    return directory


@pytest.fixture
def ledger(tracker_dir: Path) -> ResourceLedger:
    return ResourceLedger(tracker_file_path(str(tracker_dir)))


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def spec() -> VMSpec:
    return VMSpec(image_id="ami-windows", instance_type="m5a.large", ssh_key="dev")

