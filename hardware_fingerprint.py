import hashlib
import logging
import platform
import re
import subprocess
from pathlib import Path
from typing import Callable, Optional

import psutil

from config import settings
from errors import IdentityUnavailableError, LicenseIOError

log = logging.getLogger(__name__)

DEVICE_CODE_LENGTH = 16

PLACEHOLDER_SERIALS = {
    "",
    "to be filled by o.e.m.",
    "default string",
    "none",
    "0",
    "system serial number",
    "not specified",
}

DMI_SERIAL_PATHS = (
    Path("/sys/class/dmi/id/board_serial"),
    Path("/sys/devices/virtual/dmi/id/board_serial"),
)


def _run_command(command: list) -> Optional[str]:
    try:
        completed = subprocess.run(
            command,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
        )
    except OSError:
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout


def _windows_serial() -> Optional[str]:
    output = _run_command(["wmic", "baseboard", "get", "serialnumber"])
    if not output:
        return None
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    # First line is the column header
    return lines[1] if len(lines) > 1 else None


def _linux_serial() -> Optional[str]:
    for path in DMI_SERIAL_PATHS:
        try:
            serial = path.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if serial:
            return serial
    return None


def _macos_serial() -> Optional[str]:
    output = _run_command(["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"])
    if not output:
        return None
    match = re.search(r'"IOPlatformSerialNumber"\s*=\s*"([^"]*)"', output)
    return match.group(1) if match else None


def read_board_serial() -> Optional[str]:
    """Read the baseboard serial number of this machine, if the host exposes one."""
    system = platform.system()
    if system == "Windows":
        return _windows_serial()
    if system == "Darwin":
        return _macos_serial()
    return _linux_serial()


def device_code_from_serial(serial: str) -> str:
    return hashlib.sha256(serial.encode("utf-8")).hexdigest()[:DEVICE_CODE_LENGTH]


class DeviceIdentifier:
    """
    Derives the local device code from the hardware serial and persists it
    next to the application so the verifier can find it.
    """

    def __init__(
        self,
        serial_reader: Optional[Callable[[], Optional[str]]] = None,
        device_code_filename: str = settings.DEVICE_CODE_FILENAME,
        default_dir: str = settings.DEVICE_CODE_DIR,
    ):
        self.serial_reader = serial_reader or read_board_serial
        self.device_code_filename = device_code_filename
        self.default_dir = default_dir

    def generate(self, output_dir: Optional[str] = None) -> str:
        serial = self.serial_reader()
        if serial is None or serial.strip().lower() in PLACEHOLDER_SERIALS:
            raise IdentityUnavailableError(
                "Unable to read a valid motherboard serial number"
            )

        device_code = device_code_from_serial(serial.strip())

        path = self.device_code_path(output_dir)
        try:
            path.write_text(device_code, encoding="utf-8")
        except OSError as e:
            raise LicenseIOError(
                f"Failed to persist device code to {path}: {e}"
            ) from e

        log.info("Device code %s written to %s", device_code, path)
        return device_code

    def device_code_path(self, output_dir: Optional[str] = None) -> Path:
        return Path(output_dir or self.default_dir) / self.device_code_filename


def get_system_info() -> dict:
    """
    Collect host information for the health endpoint.
    """
    return {
        "os_platform": platform.system(),
        "os_release": platform.release(),
        "cpu_count": psutil.cpu_count(logical=True),
        "total_memory_gb": round(psutil.virtual_memory().total / (1024**3), 2),
        "hostname": platform.node(),
        "architecture": platform.machine()
    }
