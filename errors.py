"""
Error taxonomy for license issuance, verification and device provisioning.
"""

from typing import Optional, Sequence


class LicenseError(Exception):
    """Base class for every error raised by the provisioner."""


class IdentityUnavailableError(LicenseError):
    """The local device fingerprint could not be derived."""


class InvalidTargetError(LicenseError):
    """The target path is missing or is not a directory."""


class LicenseIOError(LicenseError):
    """A license or device code file could not be read or written."""


class MissingLicenseFileError(LicenseIOError):
    pass


class MissingDeviceCodeFileError(LicenseIOError):
    pass


class FormatError(LicenseError):
    pass


class MalformedLicenseError(FormatError):
    """License content does not split into ciphertext and nonce."""


class DecodeError(LicenseError):
    pass


class RecordParseError(DecodeError):
    """Decrypted bytes are not a serialized authorization record."""


class CryptoError(LicenseError):
    pass


class DecryptError(CryptoError):
    """
    Decryption failed.

    Wrong key, corrupted ciphertext or nonce and invalid base64 all end up
    here; callers cannot tell which one occurred.
    """


class DeviceMismatchError(LicenseError):
    pass


class TamperedError(LicenseError):
    """Stored checksum does not match the recomputed one."""


class ExternalProcessError(LicenseError):
    """The bridge utility exited non-zero or could not be spawned."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}: {self.stderr.strip()}"
        return base


class NoDevicesFoundError(LicenseError):
    pass
