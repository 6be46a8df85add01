"""
FACTURAS-SV — Catalogs
Single source for document-type codes, invalidation reasons, contingency
types and status labels. The calculator, the policy, the wire builders
and the REST layer all read from here.
"""

from enum import Enum
from typing import NamedTuple

from facturas.schemas.models import ContingencyType, EstadoDTE, InvalidationReason, TipoDTE


class TaxRegime(str, Enum):
    IVA = "iva"                          # Precio con IVA incluido (13%)
    SUJETO_EXCLUIDO = "sujeto_excluido"  # Sin IVA, retención de renta 10%
    EXPORTACION = "exportacion"          # Sin impuestos ni retenciones


class DocumentTypeInfo(NamedTuple):
    code: str
    label: str
    version: int
    regime: TaxRegime
    endpoint: str  # DTE service key in API_URLS


# Schema versions as accepted by MH during certification
DOCUMENT_TYPES: dict[TipoDTE, DocumentTypeInfo] = {
    TipoDTE.FACTURA: DocumentTypeInfo(
        "01", "Factura", 1, TaxRegime.IVA, "recepcion_dte"),
    TipoDTE.CCF: DocumentTypeInfo(
        "03", "Comprobante de Crédito Fiscal", 3, TaxRegime.IVA, "recepcion_dte"),
    TipoDTE.NOTA_REMISION: DocumentTypeInfo(
        "04", "Nota de Remisión", 3, TaxRegime.IVA, "recepcion_dte"),
    TipoDTE.NOTA_CREDITO: DocumentTypeInfo(
        "05", "Nota de Crédito", 3, TaxRegime.IVA, "recepcion_dte"),
    TipoDTE.NOTA_DEBITO: DocumentTypeInfo(
        "06", "Nota de Débito", 3, TaxRegime.IVA, "recepcion_dte"),
    TipoDTE.LIQUIDACION: DocumentTypeInfo(
        "08", "Comprobante de Liquidación", 1, TaxRegime.IVA, "recepcion_cl"),
    TipoDTE.EXPORTACION: DocumentTypeInfo(
        "11", "Factura de Exportación", 1, TaxRegime.EXPORTACION, "recepcion_fe"),
    TipoDTE.SUJETO_EXCLUIDO: DocumentTypeInfo(
        "14", "Factura de Sujeto Excluido", 1, TaxRegime.SUJETO_EXCLUIDO, "recepcion_se"),
}


INVALIDATION_REASONS: dict[InvalidationReason, str] = {
    InvalidationReason.ERROR_INFORMACION: "Error en la información del documento",
    InvalidationReason.DEVOLUCION_PRODUCTO: "Devolución de producto",
    InvalidationReason.ACUERDO_PARTES: "Anulación por acuerdo entre las partes",
    InvalidationReason.OTRO: "Otro",
}


CONTINGENCY_TYPES: dict[ContingencyType, str] = {
    ContingencyType.MH_NO_DISPONIBLE: "No disponibilidad de sistema del MH",
    ContingencyType.EMISOR_NO_DISPONIBLE: "No disponibilidad de sistema del emisor",
    ContingencyType.SIN_INTERNET: "Falla en el suministro de servicio de Internet del Emisor",
    ContingencyType.SIN_ENERGIA: "Falla en el suministro de servicio de energía eléctrica del emisor",
    ContingencyType.OTRO: "Otro",
}


STATUS_LABELS: dict[EstadoDTE, str] = {
    EstadoDTE.NUEVA: "Nueva",
    EstadoDTE.SINCRONIZANDO: "Sincronizando",
    EstadoDTE.COMPLETADA: "Completada",
    EstadoDTE.ANULADA: "Anulada",
    EstadoDTE.MODIFICADA: "Modificada",
}


def document_type_info(tipo_dte: TipoDTE | str) -> DocumentTypeInfo:
    try:
        return DOCUMENT_TYPES[TipoDTE(tipo_dte)]
    except ValueError as e:
        raise ValueError(f"Tipo DTE no soportado: {tipo_dte}") from e
