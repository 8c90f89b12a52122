"""Tests for the template catalog, customization and detection endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from ingest.templates import builtin_templates

PYG_CSV = b"Concepto,2023,2024\nCifra de negocios,1000,1200\n"


def test_lists_every_seeded_template_by_name(client: TestClient) -> None:
    response = client.get("/v1/templates")

    assert response.status_code == 200
    names = [item["name"] for item in response.json()]
    assert names == sorted(template.name for template in builtin_templates())
    pyg = next(item for item in response.json() if item["name"] == "cuenta-pyg")
    assert pyg["is_required"] is True
    assert pyg["version"] == 1


def test_unknown_template_is_404(client: TestClient) -> None:
    response = client.get("/v1/templates/nope")

    assert response.status_code == 404
    assert response.json()["detail"] == "Template 'nope' not found"


def test_customization_applies_only_to_its_company(client: TestClient) -> None:
    response = client.put(
        "/v1/templates/info-empresa/customizations/acme",
        json={
            "custom_display_name": "Ficha ACME",
            "custom_schema": {"columns": [{"name": "Campo", "type": "text", "required": True}]},
            "notes": "Solo campos obligatorios",
        },
    )

    assert response.status_code == 200
    assert response.json()["display_name"] == "Ficha ACME"

    customized = client.get("/v1/templates/info-empresa", params={"company_id": "acme"}).json()
    other = client.get("/v1/templates/info-empresa", params={"company_id": "beta"}).json()
    assert [column["name"] for column in customized["schema_definition"]["columns"]] == ["Campo"]
    assert len(other["schema_definition"]["columns"]) == 2
    assert other["display_name"] != "Ficha ACME"


def test_customization_is_replaced_not_duplicated(client: TestClient) -> None:
    url = "/v1/templates/cuenta-pyg/customizations/acme"
    client.put(url, json={"custom_display_name": "Primera"})
    client.put(url, json={"custom_display_name": "Segunda"})

    effective = client.get("/v1/templates/cuenta-pyg", params={"company_id": "acme"}).json()

    assert effective["display_name"] == "Segunda"


def test_invalid_customization_is_rejected(client: TestClient) -> None:
    response = client.put(
        "/v1/templates/info-empresa/customizations/acme",
        json={"custom_schema": {"columns": [{"name": "Valor"}, {"name": "valor"}]}},
    )

    assert response.status_code == 422


def test_customizations_with_broken_regular_expressions_are_rejected(client: TestClient) -> None:
    url = "/v1/templates/cuenta-pyg/customizations/acme"
    broken_rule = client.put(
        url,
        json={"custom_validations": [{"type": "format", "field": "Concepto", "pattern": "[", "message": "Bad"}]},
    )
    broken_column = client.put(
        url,
        json={
            "custom_schema": {
                "columns": [{"name": "Concepto", "validations": [{"type": "format", "pattern": "(unclosed"}]}]
            }
        },
    )

    assert broken_rule.status_code == 422
    assert broken_column.status_code == 422
    effective = client.get("/v1/templates/cuenta-pyg", params={"company_id": "acme"}).json()
    assert effective["validation_rules"] == client.get("/v1/templates/cuenta-pyg").json()["validation_rules"]


def test_csv_skeleton_download(client: TestClient) -> None:
    response = client.get("/v1/templates/cuenta-pyg/csv", params={"years": [2024, 2023]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == 'attachment; filename="cuenta-pyg.csv"'
    lines = response.text.splitlines()
    assert lines[0] == "Concepto,2023,2024,Notas"
    assert lines[1] == '"Cifra de negocios",,,'


def test_detect_ranks_templates_for_a_file(client: TestClient) -> None:
    response = client.post("/v1/templates/detect", files={"file": ("pyg.csv", PYG_CSV, "text/csv")})

    assert response.status_code == 200
    body = response.json()
    assert body["preview"]["detected_years"] == [2023, 2024]
    assert body["preview"]["row_count"] == 1
    scores = {match["template_name"]: match["confidence"] for match in body["matches"]}
    assert scores["cuenta-pyg"] == 1.0
    assert "pool-deuda" not in scores
