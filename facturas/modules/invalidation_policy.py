"""
FACTURAS-SV — InvalidationPolicy
Decides whether a completed DTE may be invalidated (anulación) and
validates the fields of an invalidation request.

Eligibility rules, in order (first failing rule wins):
1. Status must be Completada
2. Generation code and control number present (accepted by MH)
3. Not already invalidated
4. Issued no more than 30 days ago; older documents are immutable

Request rules:
- Reason in the enumerated catalog (codes 1-4, enum names or mnemonics)
- Reason "Otro" requires a custom reason of at least 5 characters
- Responsible name at least 3 characters
- Responsible document at least 8 characters
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from facturas.core.catalogs import INVALIDATION_REASONS
from facturas.core.config import settings
from facturas.schemas.models import (
    Document, EstadoDTE, InvalidationReason, PolicyDecision, RequestValidation,
)

MIN_CUSTOM_REASON = 5
MIN_RESPONSIBLE_NAME = 3
MIN_RESPONSIBLE_DOCUMENT = 8


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def can_invalidate(
    document: Document,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
) -> PolicyDecision:
    """Evaluate the eligibility rules against a document."""
    days = settings.invalidation_window_days if window_days is None else window_days
    now = _as_utc(now or datetime.now(timezone.utc))

    if document.status != EstadoDTE.COMPLETADA:
        return PolicyDecision(
            allowed=False, reason="Solo se pueden anular documentos completados")

    if not document.generation_code or not document.control_number:
        return PolicyDecision(
            allowed=False,
            reason="El documento no tiene código de generación o número de control")

    if document.invalidated:
        return PolicyDecision(allowed=False, reason="El documento ya está anulado")

    if now - _as_utc(document.issue_date) > timedelta(days=days):
        return PolicyDecision(
            allowed=False,
            reason=f"No se puede anular un documento con más de {days} días de antigüedad")

    return PolicyDecision(allowed=True)


# Mnemonic names accepted besides the wire codes and the enum names
REASON_ALIASES: dict[str, InvalidationReason] = {
    "error_in_information": InvalidationReason.ERROR_INFORMACION,
    "product_return": InvalidationReason.DEVOLUCION_PRODUCTO,
    "mutual_agreement": InvalidationReason.ACUERDO_PARTES,
    "other": InvalidationReason.OTRO,
}


def parse_reason(reason_code) -> Optional[InvalidationReason]:
    """Wire code ("1"-"4"), enum name (OTRO) or mnemonic (other)."""
    if isinstance(reason_code, InvalidationReason):
        return reason_code
    text = str(reason_code).strip()
    try:
        return InvalidationReason(text)
    except ValueError:
        pass
    key = text.lower().replace("-", "_").replace(" ", "_")
    if key.upper() in InvalidationReason.__members__:
        return InvalidationReason[key.upper()]
    return REASON_ALIASES.get(key)


def validate_request(
    reason_code,
    custom_reason: Optional[str],
    responsible_name: Optional[str],
    responsible_document: Optional[str],
) -> RequestValidation:
    """Validate the fields of an invalidation request. Errors name their field."""
    reason = parse_reason(reason_code)
    if reason is None:
        return RequestValidation(
            valid=False, field="reason", error="Motivo de anulación inválido")

    if reason == InvalidationReason.OTRO and len((custom_reason or "").strip()) < MIN_CUSTOM_REASON:
        return RequestValidation(
            valid=False, field="custom_reason",
            error=f"Debe especificar un motivo personalizado de al menos "
                  f"{MIN_CUSTOM_REASON} caracteres")

    if len((responsible_name or "").strip()) < MIN_RESPONSIBLE_NAME:
        return RequestValidation(
            valid=False, field="responsible_name",
            error=f"Nombre del responsable debe tener al menos "
                  f"{MIN_RESPONSIBLE_NAME} caracteres")

    if len((responsible_document or "").strip()) < MIN_RESPONSIBLE_DOCUMENT:
        return RequestValidation(
            valid=False, field="responsible_document",
            error=f"Documento del responsable debe tener al menos "
                  f"{MIN_RESPONSIBLE_DOCUMENT} caracteres")

    return RequestValidation(valid=True)


def reason_text(reason_code, custom_reason: Optional[str] = None) -> str:
    """motivoAnulacion sent to MH: the custom text for "Otro", else the catalog description."""
    reason = parse_reason(reason_code)
    if reason is None:
        raise ValueError(f"Motivo de anulación inválido: {reason_code}")
    if reason == InvalidationReason.OTRO:
        return (custom_reason or "").strip()
    return INVALIDATION_REASONS[reason]


def available_reasons() -> list[dict]:
    return [
        {"code": reason.value, "description": description}
        for reason, description in INVALIDATION_REASONS.items()
    ]
