"""
Issuance and verification of encrypted authorization records.

A license file holds a single line ``<base64 ciphertext>:<base64 nonce>``
where the ciphertext is the AES-GCM sealed JSON of an AuthorizationRecord.
"""

import logging
from pathlib import Path
from typing import Tuple, Union

from pydantic import ValidationError

import license_codec
from config import settings
from errors import (
    DecodeError,
    DeviceMismatchError,
    InvalidTargetError,
    LicenseIOError,
    MalformedLicenseError,
    MissingDeviceCodeFileError,
    MissingLicenseFileError,
    RecordParseError,
    TamperedError,
)
from models import AuthorizationRecord

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


def build_record(device_code: str) -> AuthorizationRecord:
    return AuthorizationRecord.create(device_code)


def seal_record(record: AuthorizationRecord, key: bytes) -> str:
    ciphertext, nonce = license_codec.encrypt(record.model_dump_json().encode("utf-8"), key)
    return f"{ciphertext}:{nonce}"


def open_license(content: str, key: bytes) -> AuthorizationRecord:
    """
    Decrypt license file content back into a record without any identity checks.
    """
    parts = content.strip().split(":")
    if len(parts) != 2:
        raise MalformedLicenseError(
            "License file format error (cannot split ciphertext and nonce)"
        )

    plaintext = license_codec.decrypt(parts[0], parts[1], key)

    try:
        return AuthorizationRecord.model_validate_json(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValidationError) as e:
        raise RecordParseError(f"License content could not be parsed: {e}") from e


class LicenseIssuer:
    def __init__(
        self,
        key: bytes,
        license_filename: str = settings.LICENSE_FILENAME,
    ):
        self.key = key
        self.license_filename = license_filename

    def issue(self, device_code: str, target_dir: PathLike) -> Path:
        path, _ = self.issue_with_record(device_code, target_dir)
        return path

    def issue_with_record(
        self, device_code: str, target_dir: PathLike
    ) -> Tuple[Path, AuthorizationRecord]:
        target = Path(target_dir)
        if not target.is_dir():
            raise InvalidTargetError(f"Not a valid directory: {target}")

        record = build_record(device_code)
        path = self.write_license_file(record, target / self.license_filename)
        log.info("License issued for device %s at %s", device_code, path)
        return path, record

    def write_license_file(self, record: AuthorizationRecord, path: PathLike) -> Path:
        """
        Overwrite path with the sealed record. Not atomic: a crash mid-write
        leaves a truncated file.
        """
        path = Path(path)
        try:
            path.write_text(seal_record(record, self.key), encoding="utf-8")
        except OSError as e:
            raise LicenseIOError(f"Failed to write license file {path}: {e}") from e
        return path


class LicenseVerifier:
    def __init__(
        self,
        key: bytes,
        license_filename: str = settings.LICENSE_FILENAME,
        device_code_filename: str = settings.DEVICE_CODE_FILENAME,
    ):
        self.key = key
        self.license_filename = license_filename
        self.device_code_filename = device_code_filename

    def verify(self, directory: PathLike) -> AuthorizationRecord:
        directory = Path(directory)
        license_path = directory / self.license_filename
        device_code_path = directory / self.device_code_filename

        if not license_path.exists():
            raise MissingLicenseFileError(f"License file not found: {license_path}")
        if not device_code_path.exists():
            raise MissingDeviceCodeFileError(
                f"Device code file not found: {device_code_path}"
            )

        try:
            device_code = device_code_path.read_text(encoding="utf-8").strip()
            content = license_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"License files in {directory} are not valid UTF-8: {e}") from e
        except OSError as e:
            raise LicenseIOError(f"Failed to read license files in {directory}: {e}") from e

        record = open_license(content, self.key)

        if record.device_code != device_code:
            raise DeviceMismatchError(
                f"Device code mismatch (license: {record.device_code}, "
                f"device file: {device_code})"
            )

        if not record.has_valid_checksum():
            raise TamperedError("License checksum mismatch, the file may have been tampered with")

        log.info(
            "License verified for device %s (serial %s)",
            record.device_code,
            record.serial_number,
        )
        return record
