"""Shared fixtures: fake telemetry, fake account database, temp config files."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import pytest

from syswatch.errors import TelemetryError
from syswatch.monitoring.attribution import Attributor, ProcessUsage
from syswatch.monitoring.telemetry import Device, SnapshotBuilder
from syswatch.monitoring.users import Account, UserDirectory

UID_RANGE = (1000, 60000)

LOGIN_DEFS = """\
# /etc/login.defs excerpt
MAIL_DIR        /var/mail
UID_MIN                  1000
UID_MAX                 60000
SYS_UID_MIN              101
"""


def make_device(index: int = 0, minor_number: Optional[int] = None, **overrides) -> Device:
    values = dict(
        index=index,
        minor_number=index if minor_number is None else minor_number,
        name="NVIDIA A100-SXM4-80GB",
        uuid=f"GPU-0000000{index}-aaaa-bbbb-cccc-dddddddddddd",
        temperature=41,
        power_usage=61234,
        fan_speed=30,
        memory_total=85899345920,
        memory_used=1048576,
        utilization_gpu=37,
        utilization_memory=12,
    )
    values.update(overrides)
    return Device(**values)


class FakeAccounts:
    """Callable account enumeration that counts how often it was asked"""

    def __init__(self, accounts: Sequence[Account]):
        self.accounts = list(accounts)
        self.calls = 0

    def __call__(self) -> List[Account]:
        self.calls += 1
        return list(self.accounts)


class FakeTelemetrySource:
    def __init__(
        self,
        devices: Sequence[Device] = (),
        usage: Optional[Dict[int, List[ProcessUsage]]] = None,
        driver: str = "535.104.05",
    ):
        self.devices = list(devices)
        self.usage = usage or {}
        self.driver = driver
        self.fail_on: Optional[str] = None

    def _maybe_fail(self, call: str) -> None:
        if self.fail_on == call:
            raise TelemetryError(f"{call} failed: Unknown Error")

    def driver_version(self) -> str:
        self._maybe_fail("driver_version")
        return self.driver

    def device_count(self) -> int:
        self._maybe_fail("device_count")
        return len(self.devices)

    def read_device(self, index: int) -> Device:
        self._maybe_fail("read_device")
        return self.devices[index]

    def process_usage(self, index: int) -> List[ProcessUsage]:
        self._maybe_fail("process_usage")
        return list(self.usage.get(index, []))


@pytest.fixture
def accounts() -> FakeAccounts:
    return FakeAccounts([
        Account(uid=0, name="root", shell="/bin/bash"),
        Account(uid=112, name="gdm", shell="/bin/false"),
        Account(uid=1000, name="alice", shell="/bin/bash"),
        Account(uid=1001, name="bob", shell="/usr/bin/zsh"),
        Account(uid=1002, name="svc-build", shell="/usr/sbin/nologin"),
        Account(uid=65534, name="nobody", shell="/usr/sbin/nologin"),
    ])


@pytest.fixture
def directory(accounts) -> UserDirectory:
    return UserDirectory(UID_RANGE, enumerate_accounts=accounts)


@pytest.fixture
def login_defs(tmp_path):
    path = tmp_path / "login.defs"
    path.write_text(LOGIN_DEFS)
    return path


@pytest.fixture
def fake_source() -> FakeTelemetrySource:
    return FakeTelemetrySource(
        devices=[make_device(0), make_device(1)],
        usage={
            0: [ProcessUsage(owning_uid=1000, used_memory_bytes=1_000_000)],
            1: [ProcessUsage(owning_uid=1000, used_memory_bytes=0)],
        },
    )


@pytest.fixture
def builder(fake_source, directory) -> SnapshotBuilder:
    return SnapshotBuilder(fake_source, Attributor(directory))
