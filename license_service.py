import asyncio
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy.orm import Session

from config import Settings, settings
from database import IssuanceAttempt
from errors import ExternalProcessError, InvalidTargetError, LicenseError
from hardware_fingerprint import DeviceIdentifier
from license_authority import LicenseIssuer, LicenseVerifier
from models import AuthorizationRecord
from provisioning import CandidatePaths, ProvisioningOrchestrator, LEVELS

log = logging.getLogger(__name__)

# adb runs one server per host, so provisioning runs must not overlap
provisioning_lock = asyncio.Lock()


class LicenseService:
    """
    Operations exposed to the HTTP layer. Collects a step log of
    "[LEVEL] message" lines that callers can hand back to the user.
    """

    def __init__(
        self,
        db: Session,
        bridge,
        config: Settings = settings,
        identifier: Optional[DeviceIdentifier] = None,
        run_lock: Optional[asyncio.Lock] = None,
    ):
        self.db = db
        self.bridge = bridge
        self.config = config
        self.identifier = identifier or DeviceIdentifier(
            device_code_filename=config.DEVICE_CODE_FILENAME,
            default_dir=config.DEVICE_CODE_DIR,
        )
        self.issuer = LicenseIssuer(config.license_key, config.LICENSE_FILENAME)
        self.verifier = LicenseVerifier(
            config.license_key, config.LICENSE_FILENAME, config.DEVICE_CODE_FILENAME
        )
        self.run_lock = run_lock or provisioning_lock
        self.messages: List[str] = []

    def _emit(self, level: str, message: str):
        self.messages.append(f"[{level.upper()}] {message}")

    def _log(self, level: str, message: str):
        log.log(LEVELS.get(level, logging.INFO), message)
        self._emit(level, message)

    async def list_devices(self) -> List[str]:
        self._log("info", "Refreshing ADB device list...")
        try:
            devices = await self.bridge.list_devices()
        except ExternalProcessError as e:
            self._log("error", f"Failed to list devices: {e}")
            raise
        self._log("info", f"Devices found: {devices}")
        return devices

    def generate_device_code(self, output_dir: Optional[str] = None) -> Tuple[str, Path]:
        self._log("info", "Generating local device code...")
        try:
            device_code = self.identifier.generate(output_dir)
        except LicenseError as e:
            self._log("error", f"Failed to generate device code: {e}")
            raise
        path = self.identifier.device_code_path(output_dir)
        self._log("info", f"Device code generated: {device_code}")
        return device_code, path

    def issue_license(self, device_code: str, target_dir: str) -> Tuple[Path, AuthorizationRecord]:
        self._log("info", f"Issuing license for device {device_code} in {target_dir}")
        try:
            path, record = self.issuer.issue_with_record(device_code, target_dir)
        except LicenseError as e:
            self._log("error", f"Failed to issue license for {device_code} in {target_dir}: {e}")
            self._log_attempt("local", "failed", device_code=device_code,
                              target=target_dir, error_message=str(e))
            raise

        self._log_attempt("local", "success", device_code=device_code,
                          target=str(path), serial_number=record.serial_number)
        self._log("info", f"License for device {device_code} written to {path}")
        return path, record

    def verify_license(self, directory: str) -> AuthorizationRecord:
        self._log("info", f"Verifying license in {directory}")
        try:
            record = self.verifier.verify(directory)
        except LicenseError as e:
            self._log("error", f"Verification failed in {directory}: {e}")
            raise
        self._log("info", "License verified, the license file is intact")
        return record

    def authorize_application(
        self,
        target_dir: Optional[str] = None,
        device_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Local composite flow: obtain a device code, issue the license into
        the application directory, then verify what was written.

        Issuance errors are raised. A failed verification is reported in the
        returned status instead, since the license itself was written.
        """
        target_dir = target_dir or self.config.DEFAULT_APP_DIR
        if not Path(target_dir).is_dir():
            self._log("error", f"Not a valid directory: {target_dir}")
            raise InvalidTargetError(f"Not a valid directory: {target_dir}")

        if device_code is None:
            device_code, _ = self.generate_device_code(target_dir)

        path, _ = self.issue_license(device_code, target_dir)
        authorization_message = f"License generated for device {device_code} at {path}"

        try:
            record = self.verify_license(target_dir)
        except LicenseError as e:
            return {
                "authorizationMessage": authorization_message,
                "verificationStatus": f"Verification failed: {e}",
                "verified": False,
                "verificationDetails": None,
            }

        return {
            "authorizationMessage": authorization_message,
            "verificationStatus": "Verification passed",
            "verified": True,
            "verificationDetails": record.model_dump(mode="json"),
        }

    async def provision_devices(self, batch_mode: bool) -> str:
        """
        Run remote provisioning. Runs are serialized on ``run_lock``: adb has
        one server for all devices and temp files are named per device, so
        two overlapping runs would tear down and overwrite each other.
        """
        orchestrator = ProvisioningOrchestrator(
            bridge=self.bridge,
            issuer=self.issuer,
            candidates=CandidatePaths.from_settings(self.config),
            temp_dir=self.config.TEMP_DIR,
            device_code_filename=self.config.DEVICE_CODE_FILENAME,
            sink=self._emit,
        )
        targets = ", ".join(orchestrator.candidates)
        async with self.run_lock:
            try:
                result = await orchestrator.run(batch_mode)
            except LicenseError as e:
                self._log_attempt("remote", "failed", target=targets, error_message=str(e))
                raise

        for outcome in orchestrator.outcomes:
            self._log_attempt(
                "remote",
                "success" if outcome.success else "failed",
                device_id=outcome.device_id,
                device_code=outcome.device_code,
                serial_number=outcome.serial_number,
                target=outcome.remote_dir or targets,
                error_message=outcome.error,
            )
        return result

    def _log_attempt(self, kind: str, result: str, **fields):
        """
        Record an issuance attempt in the audit table.
        """
        entry = IssuanceAttempt(kind=kind, result=result, **fields)
        self.db.add(entry)
        self.db.commit()
