"""
FACTURAS-SV — DTE Utilities
Identifier generation and date formats used on the wire.
"""

import uuid
from datetime import datetime, timedelta, timezone

from facturas.core.config import settings

# El Salvador has no DST
SV_TZ = timezone(timedelta(hours=-6))


def generate_codigo_generacion() -> str:
    """
    Generate a UUID v4 for DTE codigoGeneracion.
    Format: XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX (uppercase, 36 chars)
    """
    return str(uuid.uuid4()).upper()


def generate_numero_control(
    tipo_dte: str,
    correlativo: int,
    establecimiento: str | None = None,
    punto_venta: str | None = None,
) -> str:
    """
    DTE número de control: DTE-TT-SSSS-PPPP-NNNNNNNNNNNNNNN (32 chars)
    - TT: tipo DTE
    - SSSS: código establecimiento (M001, S001, ...)
    - PPPP: código punto de venta (P001, ...)
    - N: correlativo, 15 digits zero-padded
    """
    establecimiento = establecimiento or settings.codigo_establecimiento
    punto_venta = punto_venta or settings.codigo_punto_venta
    return f"DTE-{tipo_dte}-{establecimiento}-{punto_venta}-{str(correlativo).zfill(15)}"


def to_sv_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(SV_TZ)


def sv_date_time(value: datetime | None = None) -> tuple[str, str]:
    """(fecha "YYYY-MM-DD", hora "HH:MM:SS") in El Salvador time."""
    sv_time = to_sv_time(value or datetime.now(timezone.utc))
    return sv_time.strftime("%Y-%m-%d"), sv_time.strftime("%H:%M:%S")


def qr_date(value: datetime) -> str:
    """fechaEmi for the public verification URL: dd-MM-yyyy."""
    return to_sv_time(value).strftime("%d-%m-%Y")
