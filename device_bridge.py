"""
Async wrapper around the ADB command line.

Every call runs ``subprocess.run`` on a dedicated single-thread executor so a
slow adb process never blocks the event loop. There is no timeout: a hung adb
blocks the awaiting caller until it exits.
"""

import asyncio
import logging
import posixpath
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

from config import BridgeConfig
from errors import ExternalProcessError

log = logging.getLogger(__name__)

READY_STATUS = "device"


@dataclass(frozen=True)
class BridgeAck:
    command: List[str]
    output: str = ""


def parse_device_list(output: str) -> List[str]:
    """
    Extract ready device ids from ``adb devices`` output, preserving order.
    """
    devices = []
    for line in output.splitlines():
        tokens = line.split()
        if len(tokens) >= 2 and tokens[-1] == READY_STATUS:
            devices.append(tokens[0])
    return devices


class DeviceBridge:
    def __init__(self, config: BridgeConfig):
        self.config = config
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="device-bridge")

    def _command(self, device: Optional[str], *args: str) -> List[str]:
        command = [self.config.executable]
        if device:
            command += ["-s", device]
        command += list(args)
        return command

    def _run(self, command: Sequence[str]) -> BridgeAck:
        try:
            completed = subprocess.run(
                list(command),
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise ExternalProcessError(
                f"Failed to execute {' '.join(command)}", command, None, str(e)
            ) from e

        if completed.returncode != 0:
            raise ExternalProcessError(
                f"{' '.join(command[1:])} exited with status {completed.returncode}",
                command,
                completed.returncode,
                completed.stderr or "",
            )
        return BridgeAck(command=list(command), output=completed.stdout or "")

    async def _execute(self, command: List[str]) -> BridgeAck:
        log.debug("Running %s", command)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._run, command)

    async def list_devices(self) -> List[str]:
        ack = await self._execute(self._command(None, "devices"))
        devices = parse_device_list(ack.output)
        log.info("Ready devices: %s", devices)
        return devices

    async def pull(self, device: str, remote_path: str, local_path: str) -> BridgeAck:
        return await self._execute(self._command(device, "pull", remote_path, str(local_path)))

    async def push(self, device: str, local_path: str, remote_dir: str) -> BridgeAck:
        remote_path = posixpath.join(remote_dir, self.config.license_filename)
        return await self._execute(self._command(device, "push", str(local_path), remote_path))

    async def kill_server(self) -> BridgeAck:
        return await self._execute(self._command(None, "kill-server"))

    def close(self):
        self._executor.shutdown(wait=False)
