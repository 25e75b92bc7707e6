"""Durable record of the cloud resources a provisioning run still owes a deletion for.

The record lives in a single JSON file::

    {"InstanceIDs": ["i-0abc"], "SecurityGroupIDs": ["sg-0def"]}

Every mutation is written to disk before it becomes visible in memory, and
each write replaces the file atomically (temporary file, ``os.replace``, then
an fsync of the directory), so the file on disk always matches the last
completed cloud-side step.
"""

from __future__ import annotations

import json
import os
import stat
import tempfile
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from wni.constants import LEDGER_INSTANCE_KEY, LEDGER_SECURITY_GROUP_KEY, TRACKER_FILE_MODE
from wni.errors import CorruptLedgerError

log = logger.bind(component="ledger")


@dataclass(frozen=True, slots=True)
class ResourceRecord:
    """IDs of every resource created and not yet confirmed destroyed."""

    instance_ids: tuple[str, ...] = ()
    security_group_ids: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.instance_ids and not self.security_group_ids

    def with_instance(self, instance_id: str) -> ResourceRecord:
        if instance_id in self.instance_ids:
            return self
        return ResourceRecord((*self.instance_ids, instance_id), self.security_group_ids)

    def without_instance(self, instance_id: str) -> ResourceRecord:
        ids = tuple(i for i in self.instance_ids if i != instance_id)
        return ResourceRecord(ids, self.security_group_ids)

    def with_security_group(self, group_id: str) -> ResourceRecord:
        if group_id in self.security_group_ids:
            return self
        return ResourceRecord(self.instance_ids, (*self.security_group_ids, group_id))

    def without_security_group(self, group_id: str) -> ResourceRecord:
        ids = tuple(g for g in self.security_group_ids if g != group_id)
        return ResourceRecord(self.instance_ids, ids)

    def to_dict(self) -> dict[str, list[str]]:
        """Serialize to the on-disk layout."""
        return {
            LEDGER_INSTANCE_KEY: list(self.instance_ids),
            LEDGER_SECURITY_GROUP_KEY: list(self.security_group_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceRecord:
        """Deserialize from the on-disk layout.

        Missing or ``null`` keys load as empty lists.

        Raises:
            ValueError: If a key holds anything but a list of strings.
        """
        return cls(
            instance_ids=_id_list(data, LEDGER_INSTANCE_KEY),
            security_group_ids=_id_list(data, LEDGER_SECURITY_GROUP_KEY),
        )


def _id_list(data: dict[str, Any], key: str) -> tuple[str, ...]:
    raw = data.get(key)
    match raw:
        case None:
            return ()
        case list() if all(isinstance(item, str) for item in raw):
            return tuple(dict.fromkeys(raw))
        case _:
            raise ValueError(f"{key} must be a list of strings, got {raw!r}")


def load_record(path: str) -> ResourceRecord:
    """Read the record at ``path``; a missing file is an empty record.

    Raises:
        CorruptLedgerError: If the file exists but is not a valid record.
    """
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        log.debug("No resource tracker at {path}, starting empty", path=path)
        return ResourceRecord()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CorruptLedgerError(path, str(e)) from e

    if not isinstance(data, dict):
        raise CorruptLedgerError(path, f"expected a JSON object, got {type(data).__name__}")

    try:
        return ResourceRecord.from_dict(data)
    except ValueError as e:
        raise CorruptLedgerError(path, str(e)) from e


def write_record(path: str, record: ResourceRecord) -> None:
    """Atomically replace the file at ``path`` with ``record``."""
    directory = os.path.dirname(path) or "."
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=directory,
        prefix=".wni-",
        suffix=".tmp",
        delete=False,
    ) as tmp:
        try:
            json.dump(record.to_dict(), tmp, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
        except BaseException:
            tmp.close()
            os.unlink(tmp.name)
            raise

    try:
        os.chmod(tmp.name, _file_mode(path))
        os.replace(tmp.name, path)
    except BaseException:
        os.unlink(tmp.name)
        raise
    _fsync_directory(directory)


def _file_mode(path: str) -> int:
    """Permissions of the existing file, or the default for a new one."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        return TRACKER_FILE_MODE


def _fsync_directory(directory: str) -> None:
    """Make the rename into ``directory`` durable."""
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class ResourceLedger:
    """Thread-safe, write-through view over the resource tracker file.

    Args:
        path: Location of the tracker file. It is created on the first write.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._record: ResourceRecord | None = None

    @property
    def record(self) -> ResourceRecord:
        with self._lock:
            if self._record is None:
                self._record = load_record(self.path)
            return self._record

    def load(self) -> ResourceRecord:
        return self.record

    def reload(self) -> ResourceRecord:
        """Discard the in-memory view and read the file again."""
        with self._lock:
            self._record = load_record(self.path)
            return self._record

    def record_instance_created(self, instance_id: str) -> None:
        self._mutate(lambda r: r.with_instance(instance_id))
        log.debug("Tracking instance {id}", id=instance_id)

    def record_security_group_created(self, group_id: str) -> None:
        self._mutate(lambda r: r.with_security_group(group_id))
        log.debug("Tracking security group {id}", id=group_id)

    def remove_instance(self, instance_id: str) -> None:
        self._mutate(lambda r: r.without_instance(instance_id))

    def remove_security_group(self, group_id: str) -> None:
        self._mutate(lambda r: r.without_security_group(group_id))

    def all_instance_ids(self) -> tuple[str, ...]:
        return self.record.instance_ids

    def all_security_group_ids(self) -> tuple[str, ...]:
        return self.record.security_group_ids

    def is_empty(self) -> bool:
        return self.record.is_empty

    def _mutate(self, change: Callable[[ResourceRecord], ResourceRecord]) -> None:
        with self._lock:
            current = self._record if self._record is not None else load_record(self.path)
            updated = change(current)
            if updated == current:
                self._record = current
                return
            write_record(self.path, updated)
            self._record = updated
