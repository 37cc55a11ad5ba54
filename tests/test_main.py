import pytest
from fastapi.testclient import TestClient

import hardware_fingerprint
import main
from config import settings
from database import IssuanceAttempt, get_db

DEVICE_CODE = "0123456789abcdef"


@pytest.fixture
def client_for(session_factory):
    def build(bridge):
        def override_get_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        main.app.dependency_overrides[get_db] = override_get_db
        main.app.dependency_overrides[main.get_bridge] = lambda: bridge
        return TestClient(main.app)

    yield build
    main.app.dependency_overrides.clear()


def attempts(session_factory):
    db = session_factory()
    try:
        return db.query(IssuanceAttempt).order_by(IssuanceAttempt.id).all()
    finally:
        db.close()


def test_list_devices(client_for, make_bridge):
    client = client_for(make_bridge(devices=["R58M42ABCDE"]))

    response = client.get("/api/devices")

    assert response.status_code == 200
    body = response.json()
    assert body["devices"] == ["R58M42ABCDE"]
    assert body["log"][0].startswith("[INFO]")


def test_issue_and_verify(client_for, make_bridge, session_factory, tmp_path):
    client = client_for(make_bridge())
    (tmp_path / "device_code.bin").write_text(DEVICE_CODE, encoding="utf-8")

    issued = client.post(
        "/api/license/issue",
        json={"deviceCode": DEVICE_CODE, "targetDir": str(tmp_path)},
    )
    assert issued.status_code == 200
    assert issued.json()["path"] == str(tmp_path / "license.lic")

    verified = client.post("/api/license/verify", json={"directory": str(tmp_path)})
    body = verified.json()
    assert body["valid"] is True
    assert body["record"]["device_code"] == DEVICE_CODE
    assert body["record"]["serial_number"] == issued.json()["serialNumber"]

    rows = attempts(session_factory)
    assert [(r.kind, r.result, r.device_code) for r in rows] == [("local", "success", DEVICE_CODE)]


def test_issue_into_missing_directory(client_for, make_bridge, session_factory, tmp_path):
    client = client_for(make_bridge())

    response = client.post(
        "/api/license/issue",
        json={"deviceCode": DEVICE_CODE, "targetDir": str(tmp_path / "nope")},
    )

    assert response.status_code == 400
    rows = attempts(session_factory)
    assert rows[0].result == "failed"
    assert "Not a valid directory" in rows[0].error_message


def test_verify_reports_reason(client_for, make_bridge, tmp_path):
    client = client_for(make_bridge())

    body = client.post("/api/license/verify", json={"directory": str(tmp_path)}).json()

    assert body["valid"] is False
    assert body["reason"] == "MissingLicenseFileError"


def test_authorize_generates_device_code(client_for, make_bridge, monkeypatch, tmp_path):
    monkeypatch.setattr(hardware_fingerprint, "read_board_serial", lambda: "BOARD-123")
    client = client_for(make_bridge())

    body = client.post("/api/license/authorize", json={"targetDir": str(tmp_path)}).json()

    expected_code = hardware_fingerprint.device_code_from_serial("BOARD-123")
    assert body["verified"] is True
    assert body["verificationStatus"] == "Verification passed"
    assert body["verificationDetails"]["device_code"] == expected_code
    assert (tmp_path / "device_code.bin").read_text(encoding="utf-8") == expected_code


def test_authorize_reports_failed_verification(client_for, make_bridge, tmp_path):
    client = client_for(make_bridge())

    body = client.post(
        "/api/license/authorize",
        json={"targetDir": str(tmp_path), "deviceCode": DEVICE_CODE},
    ).json()

    assert body["verified"] is False
    assert body["verificationStatus"].startswith("Verification failed")
    assert (tmp_path / "license.lic").exists()


def test_authorize_rejects_missing_directory(client_for, make_bridge, tmp_path):
    client = client_for(make_bridge())
    response = client.post("/api/license/authorize", json={"targetDir": str(tmp_path / "nope")})
    assert response.status_code == 400


def test_provisioning_run(client_for, make_bridge, session_factory, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "TEMP_DIR", str(tmp_path))
    bridge = make_bridge(devices=["A", "B"])
    client = client_for(bridge)

    response = client.post("/api/provisioning/run", json={"batchMode": True})

    assert response.status_code == 200
    body = response.json()
    assert len(body["result"].splitlines()) == 2
    assert all(line.endswith("authorized") for line in body["result"].splitlines())
    assert any("License pushed to A" in line for line in body["log"])
    assert bridge.kill_count == 1
    rows = attempts(session_factory)
    assert [(r.kind, r.result, r.device_id) for r in rows] == [
        ("remote", "success", "A"),
        ("remote", "success", "B"),
    ]
    assert all(r.serial_number for r in rows)


def test_provisioning_without_devices(client_for, make_bridge, session_factory):
    bridge = make_bridge(devices=[])
    client = client_for(bridge)

    response = client.post("/api/provisioning/run", json={"batchMode": False})

    assert response.status_code == 404
    assert bridge.kill_count == 1
    assert attempts(session_factory)[0].result == "failed"


def test_health(client_for, make_bridge):
    client = client_for(make_bridge())

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["bridgeExecutable"] == "fake-adb"
    assert "cpu_count" in body["systemInfo"]
