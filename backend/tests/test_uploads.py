"""End-to-end tests for the upload endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from app.core.config import get_settings

PYG_CSV = b"Concepto,2023,2024\nCifra de negocios,1000,1200\n"
BALANCE_CSV = (
    "Concepto,2023\n"
    "ACTIVO NO CORRIENTE,\n"
    "Inmovilizado material,2000\n"
    "ACTIVO CORRIENTE,\n"
    "Existencias,1000\n"
    "PATRIMONIO NETO,\n"
    "Capital,{equity}\n"
    "PASIVO CORRIENTE,\n"
    "Proveedores,1000\n"
)
BUNDLE_PYG = b"Concepto,2023\nCifra de negocios,1000\nGastos de personal,300\n"


def _upload(client: TestClient, content: bytes, filename: str = "pyg.csv", **form: str):
    data = {"company_id": "acme", **form}
    return client.post("/v1/uploads", files={"file": (filename, content, "text/csv")}, data=data)


def _bundle(client: TestClient, files: dict[str, bytes], **form: str):
    return client.post(
        "/v1/uploads/bundle",
        files=[("files", (name, content, "text/csv")) for name, content in files.items()],
        data={"company_id": "acme", **form},
    )


def _balance(equity: str = "2000") -> bytes:
    return BALANCE_CSV.format(equity=equity).encode("utf-8")


def test_template_upload_loads_lines_and_finishes_the_job(client: TestClient) -> None:
    response = _upload(client, PYG_CSV, template_name="cuenta-pyg")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["template_name"] == "cuenta-pyg"
    assert body["lines_loaded"] == 2
    assert body["detected_years"] == [2023, 2024]
    assert body["validation_results"]["statistics"]["total_rows"] == 1
    assert body["validation_results"]["statistics"]["valid_rows"] == 1

    job = client.get(f"/v1/jobs/{body['job_id']}").json()
    assert job["status"] == "DONE"
    assert job["stats_json"]["progress_pct"] == 100
    assert job["stats_json"]["rows_loaded"] == 2


def test_unbalanced_balance_sheet_fails_the_job(client: TestClient) -> None:
    response = _upload(client, _balance("1990"), filename="balance.csv", template_name="balance-situacion")

    body = response.json()
    assert body["success"] is False
    assert body["lines_loaded"] == 0
    errors = body["validation_results"]["errors"]
    assert [(issue["type"], issue["column"], issue["value"]) for issue in errors] == [("balance", "2023", 10.0)]

    job = client.get(f"/v1/jobs/{body['job_id']}").json()
    assert job["status"] == "FAILED"
    assert job["stats_json"]["errors_artifact"] == f"jobs/{body['job_id']}/errors.json"


def test_dry_run_validates_without_creating_a_job(client: TestClient) -> None:
    response = client.post(
        "/v1/uploads",
        files={"file": ("pyg.csv", PYG_CSV, "text/csv")},
        data={"template_name": "cuenta-pyg", "dry_run": "true"},
    )

    body = response.json()
    assert body["success"] is True
    assert body["dry_run"] is True
    assert body["job_id"] is None
    assert body["lines_loaded"] == 0


def test_company_id_is_required_to_load(client: TestClient) -> None:
    response = client.post(
        "/v1/uploads",
        files={"file": ("pyg.csv", PYG_CSV, "text/csv")},
        data={"template_name": "cuenta-pyg"},
    )

    assert response.status_code == 400


def test_unknown_template_is_not_found(client: TestClient) -> None:
    response = _upload(client, PYG_CSV, template_name="no-such-template")

    assert response.status_code == 404


def test_empty_files_are_rejected(client: TestClient) -> None:
    response = _upload(client, b"", template_name="cuenta-pyg")

    assert response.status_code == 400
    assert response.json()["code"] == "empty_file"


def test_oversized_files_are_rejected(client: TestClient, monkeypatch) -> None:
    monkeypatch.setenv("MAX_UPLOAD_MB", "1")
    get_settings.cache_clear()
    content = b"Concepto,2023\n" + b"x" * get_settings().max_upload_bytes

    response = _upload(client, content, template_name="cuenta-pyg")

    assert response.status_code == 413


def test_bundle_without_balance_sheet_is_rejected(client: TestClient) -> None:
    response = _bundle(client, {"cuenta-pyg.csv": BUNDLE_PYG})

    assert response.status_code == 400
    assert response.json()["code"] == "missing_required_files"


def test_bundle_is_processed_to_a_terminal_state(client: TestClient) -> None:
    files = {"PyG 2023.csv": BUNDLE_PYG, "balance-situacion.csv": _balance()}

    response = _bundle(client, files)

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "accepted"
    assert body["files"] == ["balance-situacion.csv", "cuenta-pyg.csv"]

    job = client.get(f"/v1/jobs/{body['job_id']}").json()
    assert job["status"] == "DONE"
    assert job["job_type"] == "bundle"
    assert job["stats_json"]["rows_loaded"] == 6


def test_bundle_validation_errors_fail_the_job(client: TestClient) -> None:
    files = {"cuenta-pyg.csv": BUNDLE_PYG, "balance-situacion.csv": _balance("1990")}

    job_id = _bundle(client, files).json()["job_id"]

    job = client.get(f"/v1/jobs/{job_id}").json()
    assert job["status"] == "FAILED"
    assert job["error_message"] == "Validation failed in 1 of 2 files"


def test_bundle_dry_run_stops_after_validation(client: TestClient) -> None:
    files = {"cuenta-pyg.csv": BUNDLE_PYG, "balance-situacion.csv": _balance()}

    job_id = _bundle(client, files, dry_run="true").json()["job_id"]

    job = client.get(f"/v1/jobs/{job_id}").json()
    assert job["status"] == "DONE"
    assert "rows_loaded" not in job["stats_json"]


def test_repeated_bundle_is_a_duplicate_unless_forced(client: TestClient) -> None:
    files = {"cuenta-pyg.csv": BUNDLE_PYG, "balance-situacion.csv": _balance()}
    first = _bundle(client, files).json()["job_id"]

    duplicate = _bundle(client, files)
    forced = _bundle(client, files, force="true")

    assert duplicate.status_code == 409
    assert duplicate.json()["job_id"] == first
    assert forced.status_code == 202


def test_uploads_require_credentials_when_tokens_are_configured(secured_client: TestClient, tokens) -> None:
    anonymous = _upload(secured_client, PYG_CSV, template_name="cuenta-pyg")
    viewer = secured_client.post(
        "/v1/uploads",
        files={"file": ("pyg.csv", PYG_CSV, "text/csv")},
        data={"company_id": "acme", "template_name": "cuenta-pyg"},
        headers={"Authorization": f"Bearer {tokens['viewer']}"},
    )
    admin = secured_client.post(
        "/v1/uploads",
        files={"file": ("pyg.csv", PYG_CSV, "text/csv")},
        data={"company_id": "acme", "template_name": "cuenta-pyg"},
        headers={"Authorization": f"Bearer {tokens['admin']}"},
    )

    assert anonymous.status_code == 401
    assert anonymous.headers["www-authenticate"] == "Bearer"
    assert viewer.status_code == 403
    assert admin.status_code == 200
