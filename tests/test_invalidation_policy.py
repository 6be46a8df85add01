"""
FACTURAS-SV — InvalidationPolicy tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from facturas.modules.invalidation_policy import (
    available_reasons, can_invalidate, parse_reason, reason_text, validate_request,
)
from facturas.schemas.models import Document, EstadoDTE, InvalidationReason, TipoDTE

NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


def completed(days_old: int = 1, **overrides) -> Document:
    fields = dict(
        number="00001",
        document_type=TipoDTE.FACTURA,
        customer_id="K1",
        company_id="C1",
        status=EstadoDTE.COMPLETADA,
        issue_date=NOW - timedelta(days=days_old),
        generation_code="A1B2C3D4-0000-4000-8000-000000000001",
        control_number="DTE-01-M001-P001-000000000000001",
        reception_seal="2026SELLO",
    )
    fields.update(overrides)
    return Document(**fields)


class TestCanInvalidate:
    def test_recent_completed_allowed(self):
        decision = can_invalidate(completed(days_old=29), now=NOW)
        assert decision.allowed is True
        assert decision.reason is None

    def test_older_than_window(self):
        decision = can_invalidate(completed(days_old=31), now=NOW)
        assert decision.allowed is False
        assert "30 días" in decision.reason

    def test_exactly_at_window_allowed(self):
        assert can_invalidate(completed(days_old=30), now=NOW).allowed is True

    @pytest.mark.parametrize("status", [
        EstadoDTE.NUEVA, EstadoDTE.SINCRONIZANDO, EstadoDTE.ANULADA,
    ])
    def test_requires_completada(self, status):
        decision = can_invalidate(completed(status=status), now=NOW)
        assert decision.allowed is False
        assert decision.reason == "Solo se pueden anular documentos completados"

    def test_requires_identifiers(self):
        document = completed(generation_code=None, control_number=None, reception_seal=None)
        decision = can_invalidate(document, now=NOW)
        assert decision.allowed is False
        assert "código de generación" in decision.reason

    def test_already_invalidated(self):
        decision = can_invalidate(completed(invalidated=True), now=NOW)
        assert decision.allowed is False
        assert decision.reason == "El documento ya está anulado"

    def test_rules_checked_in_order(self):
        document = completed(days_old=90, status=EstadoDTE.NUEVA)
        decision = can_invalidate(document, now=NOW)
        assert decision.reason == "Solo se pueden anular documentos completados"

    def test_naive_dates_treated_as_utc(self):
        document = completed(issue_date=datetime(2026, 3, 20, 12, 0))
        assert can_invalidate(document, now=datetime(2026, 3, 31, 12, 0)).allowed is True

    def test_custom_window(self):
        assert can_invalidate(completed(days_old=5), now=NOW, window_days=3).allowed is False


class TestValidateRequest:
    def test_valid(self):
        result = validate_request("1", None, "Ana Pérez", "06141212711033")
        assert result.valid is True

    def test_invalid_reason(self):
        result = validate_request("9", None, "Ana Pérez", "06141212711033")
        assert result.valid is False
        assert result.field == "reason"

    def test_other_requires_custom_reason(self):
        result = validate_request(InvalidationReason.OTRO, "ab", "Ana Pérez", "06141212711033")
        assert result.valid is False
        assert result.field == "custom_reason"
        assert "al menos 5 caracteres" in result.error

    def test_custom_reason_is_trimmed(self):
        result = validate_request("4", "   abc   ", "Ana Pérez", "06141212711033")
        assert result.field == "custom_reason"

    @pytest.mark.parametrize("name,expected", [
        ("other", InvalidationReason.OTRO),
        ("OTRO", InvalidationReason.OTRO),
        ("Otro", InvalidationReason.OTRO),
        ("product-return", InvalidationReason.DEVOLUCION_PRODUCTO),
        ("mutual agreement", InvalidationReason.ACUERDO_PARTES),
        ("ERROR_INFORMACION", InvalidationReason.ERROR_INFORMACION),
        (4, InvalidationReason.OTRO),
    ])
    def test_reason_by_name(self, name, expected):
        assert parse_reason(name) == expected

    def test_named_other_still_requires_custom_reason(self):
        result = validate_request("other", "ab", "Ana Pérez", "06141212711033")
        assert result.field == "custom_reason"

    def test_unknown_name(self):
        assert parse_reason("refund") is None
        assert validate_request("refund", None, "Ana Pérez", "06141212711033").field == "reason"

    def test_other_with_custom_reason(self):
        assert validate_request("4", "Precio incorrecto", "Ana", "12345678").valid is True

    def test_short_name(self):
        result = validate_request("2", None, "Al", "06141212711033")
        assert result.field == "responsible_name"

    def test_short_document(self):
        result = validate_request("3", None, "Ana Pérez", "1234567")
        assert result.field == "responsible_document"
        assert "al menos 8 caracteres" in result.error


class TestReasonText:
    def test_catalog_description(self):
        assert reason_text("2") == "Devolución de producto"

    def test_custom_for_other(self):
        assert reason_text("4", "  Cliente duplicado ") == "Cliente duplicado"

    def test_unknown(self):
        with pytest.raises(ValueError):
            reason_text("7")

    def test_available_reasons(self):
        codes = [r["code"] for r in available_reasons()]
        assert codes == ["1", "2", "3", "4"]
