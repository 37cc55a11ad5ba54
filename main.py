import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from config import settings, resolve_bridge_config
from database import get_db, init_db
from device_bridge import DeviceBridge
from errors import LicenseError, ExternalProcessError, NoDevicesFoundError
from hardware_fingerprint import get_system_info
from license_service import LicenseService
from lifecycle import TeardownGuard, shutdown
from models import (
    DeviceListResponse,
    DeviceCodeRequest,
    DeviceCodeResponse,
    IssueLicenseRequest,
    IssueLicenseResponse,
    VerifyLicenseRequest,
    VerifyLicenseResponse,
    AuthorizeApplicationRequest,
    AuthorizeApplicationResponse,
    ProvisioningRequest,
    ProvisioningResponse,
    HealthCheckResponse
)

__version__ = "1.0.0"

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

bridge_config = resolve_bridge_config(settings)
bridge = DeviceBridge(bridge_config)
teardown_guard = TeardownGuard()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info("Device bridge executable: %s", bridge_config.executable)
    yield
    await shutdown(teardown_guard, bridge)
    bridge.close()


app = FastAPI(
    title="Device License Provisioner",
    description="Issues, verifies and provisions device-bound license files",
    version=__version__,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_bridge():
    return bridge


def get_service(
    db: Session = Depends(get_db),
    device_bridge=Depends(get_bridge),
) -> LicenseService:
    return LicenseService(db, device_bridge)


def http_error(e: LicenseError) -> HTTPException:
    if isinstance(e, NoDevicesFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ExternalProcessError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# API Endpoints
@app.get("/api/devices", response_model=DeviceListResponse)
async def list_devices(service: LicenseService = Depends(get_service)):
    """
    List attached devices that adb reports as ready.
    """
    try:
        devices = await service.list_devices()
    except LicenseError as e:
        raise http_error(e)
    return {"devices": devices, "log": service.messages}


@app.post("/api/device-code/generate", response_model=DeviceCodeResponse)
async def generate_device_code(
    request: DeviceCodeRequest,
    service: LicenseService = Depends(get_service)
):
    """
    Derive this machine's device code from its motherboard serial and
    write it to the device code file.
    """
    try:
        device_code, path = service.generate_device_code(request.outputDir)
    except LicenseError as e:
        raise http_error(e)
    return {"deviceCode": device_code, "path": str(path)}


@app.post("/api/license/issue", response_model=IssueLicenseResponse)
async def issue_license(
    request: IssueLicenseRequest,
    service: LicenseService = Depends(get_service)
):
    try:
        path, record = service.issue_license(request.deviceCode, request.targetDir)
    except LicenseError as e:
        raise http_error(e)
    return {
        "success": True,
        "path": str(path),
        "serialNumber": record.serial_number,
        "issuedAt": record.issued_at.isoformat(),
        "message": f"License generated for device {request.deviceCode} at {path}"
    }


@app.post("/api/license/verify", response_model=VerifyLicenseResponse)
async def verify_license(
    request: VerifyLicenseRequest,
    service: LicenseService = Depends(get_service)
):
    """
    Verify the license in a directory against its device code file.

    A rejected license is a normal answer here, reported with valid=false
    and the error class as reason.
    """
    try:
        record = service.verify_license(request.directory)
    except LicenseError as e:
        return {"valid": False, "reason": type(e).__name__, "message": str(e)}
    return {
        "valid": True,
        "record": record.model_dump(mode="json"),
        "message": "License verified"
    }


@app.post("/api/license/authorize", response_model=AuthorizeApplicationResponse)
async def authorize_application(
    request: AuthorizeApplicationRequest,
    service: LicenseService = Depends(get_service)
):
    """
    Issue and immediately verify a license for a local application directory.
    """
    try:
        return service.authorize_application(request.targetDir, request.deviceCode)
    except LicenseError as e:
        raise http_error(e)


@app.post("/api/provisioning/run", response_model=ProvisioningResponse)
async def run_provisioning(
    request: ProvisioningRequest,
    service: LicenseService = Depends(get_service)
):
    """
    Authorize attached Android devices.

    In batch mode every ready device is processed, otherwise only the first.
    Per-device failures are part of the result text.
    """
    try:
        result = await service.provision_devices(request.batchMode)
    except LicenseError as e:
        raise http_error(e)
    return {"success": True, "result": result, "log": service.messages}


@app.get("/health", response_model=HealthCheckResponse)
async def health_check(device_bridge=Depends(get_bridge)):
    """
    Health check endpoint for container orchestration.
    """
    return {
        "status": "healthy",
        "service": "license-provisioner",
        "version": __version__,
        "bridgeExecutable": device_bridge.config.executable,
        "systemInfo": get_system_info()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
