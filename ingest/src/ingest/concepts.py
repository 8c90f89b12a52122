"""Reference vocabulary for Spanish (PGC) financial statements and concept mapping."""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field

PGC_PYG_CONCEPTS: tuple[str, ...] = (
    "Cifra de negocios",
    "Variación de existencias de productos terminados",
    "Trabajos realizados por la empresa para su activo",
    "Aprovisionamientos",
    "Aprovisionamientos (compras)",
    "Otros ingresos de explotación",
    "Gastos de personal",
    "Otros gastos de explotación",
    "Amortización del inmovilizado",
    "Imputación de subvenciones",
    "Excesos de provisiones",
    "Deterioro y resultado por enajenaciones del inmovilizado",
    "Ingresos financieros",
    "Gastos financieros",
    "Variación de valor razonable en instrumentos financieros",
    "Diferencias de cambio",
    "Deterioro y resultado por enajenaciones de instrumentos financieros",
    "Impuesto sobre beneficios",
)

CONCEPT_SYNONYMS: dict[str, tuple[str, ...]] = {
    "Cifra de negocios": (
        "importe neto cifra negocios", "ventas", "ingresos", "facturación", "ingresos explotación",
        "ingresos operacionales", "ingresos ordinarios", "ventas netas", "revenue", "sales",
    ),
    "Aprovisionamientos": (
        "compras", "consumos", "coste ventas", "coste mercancías", "materias primas",
        "consumo materias primas", "purchases", "cost of goods sold", "cogs",
    ),
    "Gastos de personal": (
        "sueldos salarios", "costes personal", "nóminas", "seguridad social",
        "gastos empleados", "staff costs", "payroll", "employee costs",
    ),
    "Otros gastos de explotación": (
        "gastos explotación", "gastos operativos", "gastos generales", "gastos administración",
        "otros gastos operacionales", "operating expenses", "opex",
    ),
    "Amortización del inmovilizado": (
        "amortizaciones", "depreciación", "amortización", "depreciation", "amortization",
    ),
    "Ingresos financieros": (
        "ingresos financieros", "intereses cobrados", "dividendos", "financial income", "interest income",
    ),
    "Gastos financieros": (
        "intereses", "gastos financieros", "intereses pagados", "financial expenses", "interest expenses",
    ),
    "Impuesto sobre beneficios": (
        "impuestos", "impuesto sociedades", "tax", "income tax", "corporate tax",
    ),
    "Inmovilizado material": (
        "activos fijos", "propiedad planta equipo", "inmovilizado tangible", "fixed assets", "ppe",
    ),
    "Inmovilizado intangible": (
        "activos intangibles", "patentes", "marcas", "software", "intangible assets",
    ),
    "Existencias": (
        "inventarios", "stock", "mercaderías", "productos terminados", "inventory",
    ),
    "Deudores comerciales y otras cuentas a cobrar": (
        "clientes", "cuentas cobrar", "deudores", "accounts receivable", "trade receivables",
    ),
    "Efectivo y otros activos líquidos equivalentes": (
        "tesorería", "efectivo", "bancos", "caja", "cash", "cash equivalents",
    ),
    "Acreedores comerciales y otras cuentas a pagar": (
        "proveedores", "cuentas pagar", "acreedores", "accounts payable", "trade payables",
    ),
}

BALANCE_SECTIONS: dict[str, str] = {
    "ACTIVO NO CORRIENTE": "ACTIVO_NC",
    "ACTIVO CORRIENTE": "ACTIVO_C",
    "PATRIMONIO NETO": "PATRIMONIO_NETO",
    "PASIVO NO CORRIENTE": "PASIVO_NC",
    "PASIVO CORRIENTE": "PASIVO_C",
}

ASSET_SECTIONS = frozenset({"ACTIVO_NC", "ACTIVO_C"})
LIABILITY_EQUITY_SECTIONS = frozenset({"PATRIMONIO_NETO", "PASIVO_NC", "PASIVO_C"})

CASHFLOW_CATEGORIES: dict[str, str] = {
    "ACTIVIDADES DE EXPLOTACIÓN": "OPERATIVO",
    "ACTIVIDADES DE INVERSIÓN": "INVERSION",
    "ACTIVIDADES DE FINANCIACIÓN": "FINANCIACION",
    "EFECTIVO": "EFECTIVO",
}
DEFAULT_CASHFLOW_CATEGORY = "OPERATIVO"

# Derived metrics that must not be uploaded as P&L lines.
FORBIDDEN_DERIVED_PATTERNS: tuple[str, ...] = (
    r"ebit",
    r"ebitda",
    r"\bbai\b",
    r"beneficio.*antes.*impuesto",
    r"margen",
    r"ratio",
    r"percentage",
    r"%",
)

FUZZY_ACCEPT_THRESHOLD = 0.8
SYNONYM_CONFIDENCE = 0.95


def fold_text(value: str) -> str:
    """Lower-case and strip accents so ``Explotación`` matches ``explotacion``."""

    decomposed = unicodedata.normalize("NFKD", value.strip().lower())
    return "".join(char for char in decomposed if not unicodedata.combining(char))


@dataclass(slots=True)
class ConceptMatch:
    original: str
    mapped: str | None
    confidence: float
    suggestions: list[str] = field(default_factory=list)

    @property
    def normalized(self) -> str:
        return self.mapped or self.original


def _word_overlap(candidate: str, words: list[str]) -> float:
    candidate_words = candidate.split()
    if not candidate_words or not words:
        return 0.0
    hits = sum(
        1
        for word in words
        if any(target in word or word in target for target in candidate_words)
    )
    return hits / max(len(candidate_words), len(words))


def map_concept(concept: str) -> ConceptMatch:
    """Map a free-form concept label onto its canonical PGC name.

    Exact canonical names score 1.0, known synonyms 0.95 and word-overlap
    matches are only accepted from 0.8 upwards.
    """

    folded = fold_text(concept)

    for canonical in CONCEPT_SYNONYMS:
        if fold_text(canonical) == folded:
            return ConceptMatch(concept, canonical, 1.0)

    for canonical, synonyms in CONCEPT_SYNONYMS.items():
        if any(fold_text(synonym) == folded for synonym in synonyms):
            return ConceptMatch(concept, canonical, SYNONYM_CONFIDENCE)

    words = folded.split()
    best_name, best_score = "", 0.0
    suggestions: list[str] = []
    for canonical, synonyms in CONCEPT_SYNONYMS.items():
        score = max(
            [_word_overlap(fold_text(canonical), words)]
            + [_word_overlap(fold_text(synonym), words) for synonym in synonyms]
        )
        if score > best_score:
            best_name, best_score = canonical, score
        if 0.4 < score < FUZZY_ACCEPT_THRESHOLD:
            suggestions.append(f'"{canonical}"? ({round(score * 100)}% similar)')

    if best_score >= FUZZY_ACCEPT_THRESHOLD:
        return ConceptMatch(concept, best_name, best_score)
    return ConceptMatch(concept, None, best_score, suggestions)


_PYG_LOOKUP = {fold_text(name): name for name in PGC_PYG_CONCEPTS}


def resolve_pyg_concept(concept: str) -> str | None:
    """Return the whitelisted P&L concept for ``concept`` or ``None``."""

    direct = _PYG_LOOKUP.get(fold_text(concept))
    if direct:
        return direct

    match = map_concept(concept)
    if match.mapped and fold_text(match.mapped) in _PYG_LOOKUP:
        return _PYG_LOOKUP[fold_text(match.mapped)]
    return None


def balance_section_for(concept: str) -> str | None:
    """Return the section code when ``concept`` is a balance-sheet section header."""

    folded = fold_text(concept)
    for header, code in BALANCE_SECTIONS.items():
        if fold_text(header) == folded:
            return code
    return None


def cashflow_category_for(concept: str) -> str | None:
    folded = fold_text(concept)
    for header, code in CASHFLOW_CATEGORIES.items():
        if fold_text(header) == folded:
            return code
    return None
