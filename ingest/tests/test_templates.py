"""Tests for template matching, customization merge and CSV rendering."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ingest.templates import (
    CompanyTemplateCustomization,
    RuleType,
    ValidationRule,
    builtin_templates,
    get_builtin,
    match_template,
    merge_customization,
    rank_templates,
    render_template_csv,
    select_template,
    suggest_header_mapping,
    template_headers,
)


def _template(name: str):
    template = get_builtin(name)
    assert template is not None
    return template


def test_year_headers_count_as_matched_for_year_based_templates() -> None:
    match = match_template(_template("cuenta-pyg"), ["Concepto", "2023", "2024"])

    assert match.confidence == 1.0
    assert match.year_columns == ["2023", "2024"]
    assert match.missing_columns == ["Notas"]
    assert match.extra_columns == []


def test_required_columns_boost_the_score() -> None:
    match = match_template(_template("pool-deuda"), ["Entidad", "Principal_Inicial", "Tipo_Interes"])

    # 3 of 9 columns plus the full required boost.
    assert match.confidence == pytest.approx(3 / 9 + 0.3, abs=1e-4)


@pytest.mark.parametrize("template", builtin_templates(), ids=lambda template: template.name)
def test_adding_a_required_header_never_lowers_confidence(template) -> None:
    headers = ["Otro"]
    previous = match_template(template, headers).confidence

    for column in template.schema_definition.required_columns:
        headers = [*headers, column.name]
        current = match_template(template, headers).confidence
        assert current >= previous
        previous = current


def test_many_unknown_headers_are_penalised() -> None:
    headers = ["Campo", "a", "b", "c"]

    match = match_template(_template("info-empresa"), headers)

    assert match.confidence == pytest.approx((0.5 + 0.3) * 0.7, abs=1e-4)


def test_select_template_picks_best_candidate_above_threshold() -> None:
    selected = select_template(builtin_templates(), ["Entidad", "Principal_Inicial", "Tipo_Interes"])

    assert selected is not None
    template, match = selected
    assert template.name == "pool-deuda"
    assert match.template_name == "pool-deuda"


def test_unrelated_headers_match_nothing() -> None:
    assert select_template(builtin_templates(), ["foo", "bar"]) is None
    assert rank_templates(builtin_templates(), ["foo", "bar"]) == []


def test_rank_templates_orders_by_confidence() -> None:
    ranked = rank_templates(builtin_templates(), ["Concepto", "Unidad", "Descripción"])

    confidences = [match.confidence for match in ranked]
    assert confidences == sorted(confidences, reverse=True)
    assert ranked[0].template_name == "datos-operativos"


def test_close_headers_get_mapping_suggestions() -> None:
    match = match_template(_template("pool-deuda"), ["Entidades", "Principal_Inicial"])

    assert match.suggested_mappings == {"Entidades": "Entidad"}


def test_suggestions_never_reuse_a_template_column() -> None:
    suggestions = suggest_header_mapping(["Entidades", "Entidadd"], _template("pool-deuda"))

    assert list(suggestions.values()).count("Entidad") == 1


def test_merge_replaces_only_the_keys_it_mentions() -> None:
    base = _template("pool-deuda")
    customization = CompanyTemplateCustomization(
        company_id="acme",
        custom_schema={"allowAdditionalColumns": False, "strict_columns": True},
    )

    effective = merge_customization(base, customization)

    assert effective.schema_definition.allow_additional_columns is False
    assert effective.schema_definition.strict_columns is True
    assert effective.columns == base.columns


def test_merge_replaces_lists_wholesale_and_appends_rules() -> None:
    base = _template("balance-situacion")
    extra_rule = ValidationRule(type=RuleType.CUSTOM, message="Reviewed by auditor")
    customization = CompanyTemplateCustomization(
        company_id="acme",
        custom_schema={"columns": [{"name": "Concepto", "required": True}]},
        custom_validations=(extra_rule,),
        custom_display_name="Balance ACME",
    )

    effective = merge_customization(base, customization)

    assert [column.name for column in effective.columns] == ["Concepto"]
    assert effective.validation_rules == (*base.validation_rules, extra_rule)
    assert effective.display_name == "Balance ACME"
    # Base stays untouched.
    assert len(base.columns) == 3


def test_inactive_or_missing_customization_returns_base() -> None:
    base = _template("cuenta-pyg")
    inactive = CompanyTemplateCustomization(company_id="acme", custom_display_name="X", is_active=False)

    assert merge_customization(base, None) is base
    assert merge_customization(base, inactive) is base


def test_merge_rejects_duplicate_column_names() -> None:
    customization = CompanyTemplateCustomization(
        company_id="acme",
        custom_schema={"columns": [{"name": "Valor"}, {"name": "valor"}]},
    )

    with pytest.raises(ValidationError):
        merge_customization(_template("info-empresa"), customization)


def test_template_headers_insert_years_before_notes() -> None:
    assert template_headers(_template("cuenta-pyg"), [2024, 2023]) == ["Concepto", "2023", "2024", "Notas"]
    assert template_headers(_template("pool-deuda"), [2024])[0] == "Loan_Key"


def test_render_template_csv_lists_expected_concepts() -> None:
    content = render_template_csv(_template("cuenta-pyg"), [2023])
    lines = content.splitlines()

    assert lines[0] == "Concepto,2023,Notas"
    assert lines[1] == '"Cifra de negocios",,'
    assert content.endswith("\n")
