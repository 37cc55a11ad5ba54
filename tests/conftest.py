import asyncio
import posixpath
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import BridgeConfig, settings
from database import Base
from device_bridge import BridgeAck
from errors import ExternalProcessError

DATA_DIR = "/storage/emulated/0/Android/data/app/files/"
MEDIA_DIR = "/storage/emulated/0/Android/media/app/files/"


class FakeBridge:
    """
    In-memory stand-in for adb. Pulls write the device's code into the local
    path, pushes capture the license content that would land on the device.
    """

    def __init__(
        self,
        devices=(),
        device_codes=None,
        failing_pulls=(),
        failing_pushes=(),
        kill_error=False,
        list_error=None,
        delay=0,
    ):
        self.devices = list(devices)
        self.device_codes = device_codes or {}
        self.failing_pulls = set(failing_pulls)
        self.failing_pushes = set(failing_pushes)
        self.kill_error = kill_error
        self.list_error = list_error
        self.delay = delay
        self.calls = []
        self.pushed = {}
        self.kill_count = 0
        self.config = BridgeConfig(executable="fake-adb")

    def code_for(self, device):
        return self.device_codes.get(device, f"code-{device}")

    async def list_devices(self):
        self.calls.append(("devices",))
        await asyncio.sleep(self.delay)
        if self.list_error is not None:
            raise self.list_error
        return list(self.devices)

    async def pull(self, device, remote_path, local_path):
        self.calls.append(("pull", device, remote_path, local_path))
        await asyncio.sleep(self.delay)
        remote_dir = posixpath.dirname(remote_path) + "/"
        if (device, remote_dir) in self.failing_pulls:
            raise ExternalProcessError(
                "pull exited with status 1",
                ["adb", "-s", device, "pull", remote_path, local_path],
                1,
                f"adb: error: remote object '{remote_path}' does not exist",
            )
        Path(local_path).write_text(f"  {self.code_for(device)}\n", encoding="utf-8")
        return BridgeAck(command=["adb", "pull"])

    async def push(self, device, local_path, remote_dir):
        self.calls.append(("push", device, local_path, remote_dir))
        await asyncio.sleep(self.delay)
        if (device, remote_dir) in self.failing_pushes:
            raise ExternalProcessError(
                "push exited with status 1",
                ["adb", "-s", device, "push", local_path, remote_dir],
                1,
                "adb: error: failed to copy: Permission denied",
            )
        self.pushed[(device, remote_dir)] = Path(local_path).read_text(encoding="utf-8")
        return BridgeAck(command=["adb", "push"])

    async def kill_server(self):
        self.calls.append(("kill-server",))
        self.kill_count += 1
        if self.kill_error:
            raise ExternalProcessError("kill-server exited with status 1", ["adb", "kill-server"], 1, "boom")
        return BridgeAck(command=["adb", "kill-server"])


@pytest.fixture
def key():
    return settings.license_key


@pytest.fixture
def make_bridge():
    return FakeBridge


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
