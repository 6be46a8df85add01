"""
FACTURAS-SV Core Configuration
DTE service URLs, tax constants and application settings.
"""

from decimal import Decimal
from enum import Enum

from pydantic_settings import BaseSettings, SettingsConfigDict


class MHEnvironment(str, Enum):
    TEST = "test"
    PRODUCTION = "production"


class Settings(BaseSettings):
    app_name: str = "FACTURAS-SV"
    app_version: str = "1.0.0"
    debug: bool = True
    mh_environment: MHEnvironment = MHEnvironment.TEST
    host: str = "0.0.0.0"
    port: int = 8000

    # Tax constants (statutory rates)
    tax_factor: Decimal = Decimal("1.13")
    income_retention_rate: Decimal = Decimal("0.10")
    iva_retention_rate: Decimal = Decimal("0.01")
    rounding_scale: int = 2

    # Lifecycle
    invalidation_window_days: int = 30
    submission_timeout_seconds: float = 90.0

    # DTE service
    api_key: str = ""
    codigo_establecimiento: str = "M001"
    codigo_punto_venta: str = "P001"

    # Credential vault (Fernet master key)
    encryption_master_key: str = ""

    # Supabase (optional; in-memory store when unset)
    supabase_url: str = ""
    supabase_service_key: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()


# ─────────────────────────────────────────────────────────────
# DTE SERVICE URL REGISTRY
# The DTE service signs with the company certificate and relays
# the document to the MH reception API.
# ─────────────────────────────────────────────────────────────

API_URLS = {
    MHEnvironment.TEST: {
        "base":          "https://k-invoices-api-dev.azurewebsites.net/api",
        "recepcion_dte": "https://k-invoices-api-dev.azurewebsites.net/api/document/dte/sync",
        "recepcion_fe":  "https://k-invoices-api-dev.azurewebsites.net/api/document/dte/fe/sync/",
        "recepcion_se":  "https://k-invoices-api-dev.azurewebsites.net/api/document/dte/se/sync/",
        "recepcion_cl":  "https://k-invoices-api-dev.azurewebsites.net/api/document/dte/cl/sync/",
        "anulacion_dte": "https://k-invoices-api-dev.azurewebsites.net/api/document/dte/invalidate",
        "contingencia":  "https://k-invoices-api-dev.azurewebsites.net/api/document/contingencia/report",
    },
    MHEnvironment.PRODUCTION: {
        "base":          "https://k-invoices-api-prod.azurewebsites.net/api",
        "recepcion_dte": "https://k-invoices-api-prod.azurewebsites.net/api/document/dte/sync",
        "recepcion_fe":  "https://k-invoices-api-prod.azurewebsites.net/api/document/dte/fe/sync/",
        "recepcion_se":  "https://k-invoices-api-prod.azurewebsites.net/api/document/dte/se/sync/",
        "recepcion_cl":  "https://k-invoices-api-prod.azurewebsites.net/api/document/dte/cl/sync/",
        "anulacion_dte": "https://k-invoices-api-prod.azurewebsites.net/api/document/dte/invalidate",
        "contingencia":  "https://k-invoices-api-prod.azurewebsites.net/api/document/contingencia/report",
    },
}

# Public verification portal (QR code on printed documents)
QR_URLS = {
    MHEnvironment.TEST:       "https://test7.mh.gob.sv/ssc/consulta/fe/",
    MHEnvironment.PRODUCTION: "https://admin.factura.gob.sv/consultaPublica/",
}


def get_api_url(service: str, environment: MHEnvironment | None = None) -> str:
    """Get the DTE service URL for a service based on current environment."""
    env = environment or settings.mh_environment
    urls = API_URLS.get(env)
    if not urls:
        raise ValueError(f"Unknown MH environment: {env}")
    url = urls.get(service)
    if not url:
        raise ValueError(f"Unknown DTE service: {service}")
    return url


def get_qr_base_url(environment: MHEnvironment | None = None) -> str:
    return QR_URLS[environment or settings.mh_environment]


def environment_code(environment: MHEnvironment | None = None) -> str:
    """MH ambiente code: "00" test, "01" production."""
    env = environment or settings.mh_environment
    return "01" if env == MHEnvironment.PRODUCTION else "00"
