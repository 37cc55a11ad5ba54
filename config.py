import os
import platform
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Pre-shared AES-256-GCM key, hex encoded
    LICENSE_KEY_HEX: str = "6a1c6109e26cad37f6295bd3f3c270447f9272c4318237685b6c411d3a34359e"

    # Canonical filenames
    LICENSE_FILENAME: str = "license.lic"
    DEVICE_CODE_FILENAME: str = "device_code.bin"
    DEVICE_CODE_DIR: str = "."

    # Device bridge (ADB)
    ADB_PATH: Optional[str] = None
    PLATFORM_TOOLS_DIR: str = "platform-tools"

    # Remote install directories, tried data partition first
    REMOTE_DATA_PATHS: List[str] = [
        "/storage/emulated/0/Android/data/alvr.client.stable/files/BUPT-VR_Client/",
    ]
    REMOTE_MEDIA_PATHS: List[str] = [
        "/storage/emulated/0/Android/media/alvr.client.stable/files/",
    ]

    TEMP_DIR: str = tempfile.gettempdir()

    # Database
    DATABASE_URL: str = "sqlite:///./license_provisioner.db"

    LOG_LEVEL: str = "INFO"

    # Application directory used when a local authorization names none
    DEFAULT_APP_DIR: str = os.getcwd()

    class Config:
        env_file = ".env"

    @property
    def license_key(self) -> bytes:
        return bytes.fromhex(self.LICENSE_KEY_HEX)

    @property
    def remote_paths(self) -> List[str]:
        return list(self.REMOTE_DATA_PATHS) + list(self.REMOTE_MEDIA_PATHS)


class BridgeConfig(BaseModel, frozen=True):
    """Resolved once at startup and passed by value to every collaborator."""

    executable: str
    license_filename: str = "license.lic"


def resolve_bridge_config(config: Settings) -> BridgeConfig:
    """
    Pick the ADB executable: explicit ADB_PATH, then the bundled
    platform-tools copy, then whatever is on PATH.
    """
    executable_name = "adb.exe" if platform.system() == "Windows" else "adb"

    if config.ADB_PATH:
        executable = config.ADB_PATH
    else:
        bundled = Path(config.PLATFORM_TOOLS_DIR) / executable_name
        if bundled.is_file():
            executable = str(bundled.resolve())
        else:
            executable = shutil.which(executable_name) or executable_name

    return BridgeConfig(executable=executable, license_filename=config.LICENSE_FILENAME)


settings = Settings()
