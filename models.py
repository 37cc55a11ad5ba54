import hashlib
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, field_validator

# Rendering of issued_at fed into the checksum. Changing it invalidates
# every license issued before the change.
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f UTC"


def render_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def compute_checksum(device_code: str, serial_number: str, issued_at: datetime) -> str:
    payload = f"{device_code}{serial_number}{render_timestamp(issued_at)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class AuthorizationRecord(BaseModel):
    device_code: str
    issued_at: datetime
    serial_number: str
    checksum: str

    @field_validator("issued_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def create(
        cls,
        device_code: str,
        serial_number: Optional[str] = None,
        issued_at: Optional[datetime] = None,
    ) -> "AuthorizationRecord":
        """
        Build a fresh record: new serial, current UTC time, matching checksum.
        """
        serial_number = serial_number or str(uuid.uuid4())
        issued_at = issued_at or datetime.now(timezone.utc)
        return cls(
            device_code=device_code,
            issued_at=issued_at,
            serial_number=serial_number,
            checksum=compute_checksum(device_code, serial_number, issued_at),
        )

    def expected_checksum(self) -> str:
        return compute_checksum(self.device_code, self.serial_number, self.issued_at)

    def has_valid_checksum(self) -> bool:
        return self.checksum == self.expected_checksum()


# API schemas

class DeviceListResponse(BaseModel):
    devices: List[str]
    log: List[str] = []


class DeviceCodeRequest(BaseModel):
    outputDir: Optional[str] = None


class DeviceCodeResponse(BaseModel):
    deviceCode: str
    path: str


class IssueLicenseRequest(BaseModel):
    deviceCode: str
    targetDir: str


class IssueLicenseResponse(BaseModel):
    success: bool
    path: str
    serialNumber: str
    issuedAt: str
    message: Optional[str] = None


class VerifyLicenseRequest(BaseModel):
    directory: str


class VerifyLicenseResponse(BaseModel):
    valid: bool
    record: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    message: Optional[str] = None


class AuthorizeApplicationRequest(BaseModel):
    targetDir: Optional[str] = None
    deviceCode: Optional[str] = None


class AuthorizeApplicationResponse(BaseModel):
    authorizationMessage: str
    verificationStatus: str
    verified: bool
    verificationDetails: Optional[Dict[str, Any]] = None


class ProvisioningRequest(BaseModel):
    batchMode: bool = False


class ProvisioningResponse(BaseModel):
    success: bool
    result: str
    log: List[str] = []


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    version: str
    bridgeExecutable: Optional[str] = None
    systemInfo: Optional[Dict[str, Any]] = None
