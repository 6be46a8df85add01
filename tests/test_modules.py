"""
FACTURAS-SV — Unit Tests
Tests for helpers, config, catalogs, models and the credential vault.

Run: pytest tests/ -v
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from cryptography.fernet import InvalidToken

# ─────────────────────────────────────────────────────────────
# DTE HELPERS
# ─────────────────────────────────────────────────────────────

from facturas.utils.dte_helpers import (
    generate_codigo_generacion,
    generate_numero_control,
    qr_date,
    sv_date_time,
)


class TestGenerateCodigoGeneracion:
    def test_returns_uuid_format(self):
        code = generate_codigo_generacion()
        parts = code.split("-")
        assert len(parts) == 5
        assert len(code) == 36
        assert code == code.upper()

    def test_returns_unique_values(self):
        codes = {generate_codigo_generacion() for _ in range(100)}
        assert len(codes) == 100

    def test_is_valid_uuid(self):
        code = generate_codigo_generacion()
        parsed = uuid.UUID(code, version=4)
        assert str(parsed).upper() == code


class TestGenerateNumeroControl:
    def test_default_format(self):
        nc = generate_numero_control("03", 1)
        assert nc == "DTE-03-M001-P001-000000000000001"
        assert len(nc) == 32

    def test_custom_params(self):
        nc = generate_numero_control("01", 42, "M002", "P003")
        assert nc == "DTE-01-M002-P003-000000000000042"

    def test_all_dte_types(self):
        for tipo in ["01", "03", "04", "05", "06", "08", "11", "14"]:
            nc = generate_numero_control(tipo, 7)
            assert nc.startswith(f"DTE-{tipo}-")
            assert len(nc) == 32


class TestSVDates:
    def test_converts_to_sv_time(self):
        fecha, hora = sv_date_time(datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        assert (fecha, hora) == ("2026-01-01", "21:04:05")

    def test_naive_is_utc(self):
        assert sv_date_time(datetime(2026, 1, 2, 12, 0))[1] == "06:00:00"

    def test_qr_date(self):
        assert qr_date(datetime(2026, 7, 9, 12, 0, tzinfo=timezone.utc)) == "09-07-2026"


# ─────────────────────────────────────────────────────────────
# CONFIG & CATALOGS
# ─────────────────────────────────────────────────────────────

from facturas.core.catalogs import CONTINGENCY_TYPES, DOCUMENT_TYPES, TaxRegime, document_type_info
from facturas.core.config import (
    API_URLS, MHEnvironment, environment_code, get_api_url, get_qr_base_url, settings,
)
from facturas.schemas.models import ContingencyType, TipoDTE


class TestConfig:
    def test_default_rates(self):
        assert settings.tax_factor == Decimal("1.13")
        assert settings.invalidation_window_days == 30
        assert settings.submission_timeout_seconds == 90.0

    def test_both_environments_have_same_services(self):
        assert set(API_URLS[MHEnvironment.TEST]) == set(API_URLS[MHEnvironment.PRODUCTION])

    def test_get_api_url(self):
        url = get_api_url("recepcion_se", MHEnvironment.PRODUCTION)
        assert url == "https://k-invoices-api-prod.azurewebsites.net/api/document/dte/se/sync/"

    def test_unknown_service(self):
        with pytest.raises(ValueError, match="Unknown DTE service"):
            get_api_url("nope")

    def test_environment_code(self):
        assert environment_code(MHEnvironment.TEST) == "00"
        assert environment_code(MHEnvironment.PRODUCTION) == "01"

    def test_qr_base(self):
        assert get_qr_base_url(MHEnvironment.PRODUCTION) == "https://admin.factura.gob.sv/consultaPublica/"


class TestCatalogs:
    def test_every_type_is_catalogued(self):
        assert set(DOCUMENT_TYPES) == set(TipoDTE)

    @pytest.mark.parametrize("code,regime", [
        ("01", TaxRegime.IVA), ("03", TaxRegime.IVA), ("08", TaxRegime.IVA),
        ("11", TaxRegime.EXPORTACION), ("14", TaxRegime.SUJETO_EXCLUIDO),
    ])
    def test_regimes(self, code, regime):
        assert document_type_info(code).regime == regime

    def test_endpoints_exist(self):
        for info in DOCUMENT_TYPES.values():
            assert get_api_url(info.endpoint)

    def test_unknown(self):
        with pytest.raises(ValueError):
            document_type_info("07")

    def test_contingency_types(self):
        assert set(CONTINGENCY_TYPES) == set(ContingencyType)
        assert get_api_url("contingencia", MHEnvironment.TEST).endswith("/document/contingencia/report")


# ─────────────────────────────────────────────────────────────
# MODELS
# ─────────────────────────────────────────────────────────────

from pydantic import ValidationError as PydanticValidationError

from facturas.schemas.models import AcceptanceIds, Document, LineItem


class TestModels:
    def base(self, **kw):
        return dict(number="00001", document_type="01", customer_id="K", company_id="C", **kw)

    def test_acceptance_ids_all_or_nothing(self):
        with pytest.raises(PydanticValidationError):
            Document(**self.base(generation_code="GEN"))

    def test_modified_defaults_false(self):
        doc = Document(**self.base())
        assert doc.modified is False
        assert doc.contingency is None

    def test_acceptance_ids_complete(self):
        doc = Document(**self.base(generation_code="G", control_number="N", reception_seal="S"))
        assert doc.is_accepted

    @pytest.mark.parametrize("qty", [0, 101])
    def test_quantity_bounds(self, qty):
        with pytest.raises(PydanticValidationError):
            LineItem(quantity=qty, unit_price=Decimal("1"), product_id="P")

    def test_negative_price(self):
        with pytest.raises(PydanticValidationError):
            LineItem(quantity=1, unit_price=Decimal("-0.01"), product_id="P")

    def test_missing_ids(self):
        ids = AcceptanceIds(generation_code="G")
        assert not ids.complete
        assert ids.missing == ["control_number", "reception_seal"]


# ─────────────────────────────────────────────────────────────
# CREDENTIAL VAULT
# ─────────────────────────────────────────────────────────────

from facturas.schemas.models import ServiceCredentials
from facturas.services.credential_vault import CredentialVault


class TestCredentialVault:
    def setup_method(self):
        self.vault = CredentialVault(CredentialVault.generate_master_key())
        self.creds = ServiceCredentials(user="06141212711033", password="pwd", certificate_key="k")

    def test_store_and_get(self):
        self.vault.store("C1", self.creds)
        assert self.vault.get("C1") == self.creds
        assert self.vault.has_certificate("C1")

    def test_missing_company(self):
        assert self.vault.get("C9") is None
        assert not self.vault.has_certificate("C9")

    def test_encrypted_at_rest(self):
        self.vault.store("C1", self.creds)
        assert b"pwd" not in self.vault._tokens["C1"]

    def test_keys_are_per_company(self):
        self.vault.store("C1", self.creds)
        self.vault._tokens["C2"] = self.vault._tokens["C1"]
        with pytest.raises(InvalidToken):
            self.vault.get("C2")

    def test_remove(self):
        self.vault.store("C1", self.creds)
        self.vault.remove("C1")
        assert self.vault.get("C1") is None
