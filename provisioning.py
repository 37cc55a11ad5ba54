"""
Remote license provisioning across attached Android devices.

Devices and candidate paths are processed strictly one after another: adb
runs a single server shared by every ``-s`` selector, and interleaving
commands for different devices through it is unsafe.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Protocol, Tuple

from config import Settings
from errors import ExternalProcessError, LicenseError, LicenseIOError, NoDevicesFoundError
from license_authority import LicenseIssuer, build_record
from models import AuthorizationRecord

log = logging.getLogger(__name__)

NOTHING_PROCESSED = "nothing processed"

LogSink = Callable[[str, str], None]

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class Bridge(Protocol):
    async def list_devices(self) -> List[str]: ...

    async def pull(self, device: str, remote_path: str, local_path: str): ...

    async def push(self, device: str, local_path: str, remote_dir: str): ...

    async def kill_server(self): ...


@dataclass(frozen=True)
class CandidatePaths:
    """Remote install directories in fallback priority order."""

    paths: Tuple[str, ...]

    @classmethod
    def from_settings(cls, config: Settings) -> "CandidatePaths":
        return cls.of(config.remote_paths)

    @classmethod
    def of(cls, paths: Iterable[str]) -> "CandidatePaths":
        return cls(tuple(normalize_remote_dir(p) for p in paths))

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self.paths)


def normalize_remote_dir(path: str) -> str:
    return path if path.endswith("/") else path + "/"


@dataclass
class DeviceOutcome:
    """What happened to one device during a provisioning run."""

    device_id: str
    message: str
    success: bool
    device_code: Optional[str] = None
    serial_number: Optional[str] = None
    remote_dir: Optional[str] = None
    error: Optional[str] = None


class ProvisioningOrchestrator:
    def __init__(
        self,
        bridge: Bridge,
        issuer: LicenseIssuer,
        candidates: CandidatePaths,
        temp_dir: str,
        device_code_filename: str,
        sink: Optional[LogSink] = None,
    ):
        self.bridge = bridge
        self.issuer = issuer
        self.candidates = candidates
        self.temp_dir = Path(temp_dir)
        self.device_code_filename = device_code_filename
        self.sink = sink
        self.outcomes: List[DeviceOutcome] = []

    def _log(self, level: str, message: str):
        log.log(LEVELS.get(level, logging.INFO), message)
        if self.sink is not None:
            self.sink(level, message)

    async def run(self, batch_mode: bool) -> str:
        """
        Provision every ready device (or only the first one outside batch
        mode) and return one result line per processed device.

        Raises NoDevicesFoundError when nothing is attached. Path and device
        failures are folded into the returned text instead. Per-device
        details of the last run are kept in ``outcomes``.
        """
        self._log("info", f"Starting Android authorization, batch mode: {batch_mode}")
        self.outcomes = []
        try:
            devices = await self.bridge.list_devices()
            if not devices:
                self._log("error", "No devices detected, check the connection")
                raise NoDevicesFoundError("No devices detected, check the connection")

            working_set = devices if batch_mode else devices[:1]
            for device_id in working_set:
                await self.provision_device(device_id)
        finally:
            await self._teardown()

        if not self.outcomes:
            return NOTHING_PROCESSED
        return "\n".join(outcome.message for outcome in self.outcomes)

    async def provision_device(self, device_id: str) -> str:
        self._log("info", f"Processing device {device_id}")
        last_error = None
        for remote_dir in self.candidates:
            self._log("info", f"Device {device_id}, trying path {remote_dir}")
            try:
                record = await self.provision_path(device_id, remote_dir)
            except Exception as e:
                if not isinstance(e, LicenseError):
                    log.warning("Unexpected error provisioning %s", device_id, exc_info=True)
                last_error = str(e) or type(e).__name__
                self._log(
                    "warn",
                    f"Device {device_id} failed at path {remote_dir}: {last_error}. Trying next path...",
                )
                continue

            message = f"{device_id} @ {remote_dir} authorized"
            self._log("info", message)
            self.outcomes.append(DeviceOutcome(
                device_id=device_id,
                message=message,
                success=True,
                device_code=record.device_code,
                serial_number=record.serial_number,
                remote_dir=remote_dir,
            ))
            return message

        message = f"{device_id} failed at all known paths"
        self._log("error", message)
        self.outcomes.append(DeviceOutcome(
            device_id=device_id, message=message, success=False, error=last_error,
        ))
        return message

    async def provision_path(self, device_id: str, remote_dir: str) -> AuthorizationRecord:
        remote_dir = normalize_remote_dir(remote_dir)
        local_code_path = self.temp_dir / f"{device_id}_{self.device_code_filename}"
        local_license_path = self.temp_dir / f"{device_id}_{self.issuer.license_filename}"

        try:
            await self.bridge.pull(
                device_id, remote_dir + self.device_code_filename, str(local_code_path)
            )
            self._log("info", f"Device code of {device_id} pulled to {local_code_path}")

            device_code = self._read_device_code(local_code_path)
            self._log("info", f"Authorizing device {device_id} (device code: {device_code})")

            record = build_record(device_code)
            self.issuer.write_license_file(record, local_license_path)

            await self.bridge.push(device_id, str(local_license_path), remote_dir)
            self._log("info", f"License pushed to {device_id} at {remote_dir}")
        finally:
            self._remove_temp(local_code_path, local_license_path)

        return record

    def _read_device_code(self, path: Path) -> str:
        try:
            device_code = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise LicenseIOError(f"Failed to read pulled device code {path}: {e}") from e
        if not device_code:
            raise LicenseIOError(f"Pulled device code file {path} is empty")
        return device_code

    def _remove_temp(self, *paths: Path):
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                log.warning("Could not remove temp file %s: %s", path, e)

    async def _teardown(self):
        try:
            await self.bridge.kill_server()
        except ExternalProcessError as e:
            self._log("error", f"Failed to stop ADB server: {e}")
        else:
            self._log("info", "ADB server stopped")
