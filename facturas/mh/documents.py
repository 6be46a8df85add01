"""
FACTURAS-SV: Constructores de JSON para el servicio DTE
========================================================
- build_dte(): cuerpo del DTE a transmitir (resumen desde Totals)
- build_invalidation_document(): solicitud de anulación
- build_contingency_report(): evento de contingencia (documentos emitidos sin conexión)
- build_qr_url(): URL de consulta pública

REGLAS:
- montos como float con 2 decimales (el JSON de MH no acepta strings)
- 01: ivaItem = ventaGravada - ventaGravada/1.13 (NO * 0.13)
- 14: usa sujetoExcluido (no receptor), reteRenta 10%
- 11: sin tributos
- anulación: fecEmi/horEmi son los del documento original
- contingencia: tipoModelo/tipoOperacion 2 y los códigos reservados al encolar
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from facturas.core.catalogs import CONTINGENCY_TYPES, TaxRegime, document_type_info
from facturas.core.config import MHEnvironment, environment_code, get_qr_base_url, settings
from facturas.modules.invalidation_policy import parse_reason, reason_text
from facturas.modules.tax_calculator import round_currency
from facturas.schemas.models import (
    ContingencyType, Document, Emisor, InvalidationReason, TipoDTE,
)
from facturas.utils.dte_helpers import generate_codigo_generacion, qr_date, sv_date_time

INVALIDATION_VERSION = 2
CONTINGENCY_VERSION = 3


def _f(value: Decimal) -> float:
    return float(round_currency(value))


def build_dte(
    document: Document,
    codigo_generacion: str,
    numero_control: str,
    environment: MHEnvironment | None = None,
) -> dict[str, Any]:
    info = document_type_info(document.document_type)
    fec_emi, hor_emi = sv_date_time(document.issue_date)
    totals = document.totals
    gravada = info.regime == TaxRegime.IVA

    cuerpo = []
    for i, item in enumerate(document.items, 1):
        monto = round_currency(item.line_total)
        linea = {
            "numItem": i,
            "codigo": item.product_id,
            "descripcion": item.product_name,
            "cantidad": float(item.quantity),
            "uniMedida": 59,
            "precioUni": _f(item.unit_price),
            "montoDescu": 0.0,
            "ventaGravada": float(monto) if gravada else 0.0,
            "observacion": item.observation or None,
        }
        if info.regime == TaxRegime.SUJETO_EXCLUIDO:
            linea["compra"] = float(monto)
        if info.regime == TaxRegime.EXPORTACION:
            linea["ventaGravada"] = float(monto)
            linea["tributos"] = None
        if document.document_type == TipoDTE.FACTURA:
            linea["ivaItem"] = _f(monto - monto / settings.tax_factor)
        cuerpo.append(linea)

    resumen = {
        "totalGravada": _f(totals.total_amount) if gravada else 0.0,
        "subTotal": _f(totals.sub_total),
        "totalIva": _f(totals.tax),
        "ivaRete1": _f(totals.iva_rete1),
        "reteRenta": _f(totals.rete_renta),
        "montoTotalOperacion": _f(totals.total_amount),
        "totalPagar": _f(totals.total_pagar),
        "condicionOperacion": 1,
    }

    dte: dict[str, Any] = {
        "identificacion": {
            "version": info.version,
            "ambiente": environment_code(environment),
            "tipoDte": info.code,
            "numeroControl": numero_control,
            "codigoGeneracion": codigo_generacion,
            "tipoModelo": 1,
            "tipoOperacion": 1,
            "tipoContingencia": None,
            "motivoContin": None,
            "fecEmi": fec_emi,
            "horEmi": hor_emi,
            "tipoMoneda": "USD",
        },
        "cuerpoDocumento": cuerpo,
        "resumen": resumen,
    }

    contingency = document.contingency
    if contingency:
        # Modelo diferido, transmisión en contingencia
        dte["identificacion"].update({
            "tipoModelo": 2,
            "tipoOperacion": 2,
            "tipoContingencia": int(contingency.reason.value),
            "motivoContin": (
                contingency.description if contingency.reason == ContingencyType.OTRO else None
            ),
        })

    receptor_key = "sujetoExcluido" if info.regime == TaxRegime.SUJETO_EXCLUIDO else "receptor"
    dte[receptor_key] = {
        "id": document.customer_id,
        "nombre": document.receptor or None,
        "numDocumento": document.receptor_document or None,
    }

    if document.document_type == TipoDTE.NOTA_REMISION:
        dte["extension"] = {
            "nombEntrega": document.delivery_name or None,
            "docuEntrega": document.delivery_document or None,
            "observaciones": document.observations or None,
        }
    elif document.observations:
        dte["extension"] = {"observaciones": document.observations}

    if document.related_document_number:
        rel_date = document.related_document_date or document.issue_date
        dte["documentoRelacionado"] = [{
            "tipoDocumento": (document.related_document_type or TipoDTE.CCF).value,
            "tipoGeneracion": 2,
            "numeroDocumento": document.related_document_number,
            "fechaEmision": sv_date_time(rel_date)[0],
        }]
    elif document.document_type == TipoDTE.FACTURA:
        dte["documentoRelacionado"] = None

    return dte


def build_invalidation_document(
    document: Document,
    issuer: Emisor,
    reason: InvalidationReason | str,
    custom_reason: str | None,
    responsible_name: str,
    responsible_document: str,
    responsible_document_type: str = "36",
    now: datetime | None = None,
    environment: MHEnvironment | None = None,
) -> dict[str, Any]:
    """
    Build the invalidation request for an accepted document.
    Fields are assumed validated by InvalidationPolicy.
    """
    info = document_type_info(document.document_type)
    fec_emi, hor_emi = sv_date_time(document.issue_date)
    fecha_solicitud, _ = sv_date_time(now or datetime.now(timezone.utc))
    reason = parse_reason(reason)
    if reason is None:
        raise ValueError("Motivo de anulación inválido")

    return {
        "identificacion": {
            "version": INVALIDATION_VERSION,
            "ambiente": environment_code(environment),
            "tipoDte": info.code,
            "numeroControl": document.control_number,
            "codigoGeneracion": document.generation_code,
            "tipoModelo": 1,
            "tipoOperacion": 1,
            "fecEmi": fec_emi,
            "horEmi": hor_emi,
            "tipoMoneda": "USD",
        },
        "documento": {
            "selloRecibido": document.reception_seal,
            "montoIva": _f(document.totals.tax),
        },
        "motivo": {
            "tipoAnulacion": int(reason.value),
            "motivoAnulacion": reason_text(reason, custom_reason),
            "nombreResponsable": responsible_name.strip(),
            "tipDocResponsable": responsible_document_type,
            "numDocResponsable": responsible_document.strip(),
            "fechaSolicitud": fecha_solicitud,
        },
        "emisor": {
            "nit": issuer.nit,
            "nrc": issuer.nrc,
            "nombre": issuer.nombre,
            "codActividad": issuer.cod_actividad,
            "descActividad": issuer.desc_actividad,
            "nombreComercial": issuer.nombre_comercial,
            "tipoEstablecimiento": issuer.tipo_establecimiento,
            "direccion": {
                "departamento": issuer.direccion.departamento,
                "municipio": issuer.direccion.municipio,
                "complemento": issuer.direccion.complemento,
            },
            "telefono": issuer.telefono,
            "correo": issuer.correo,
        },
    }


def build_contingency_report(
    documents: list[Document],
    issuer: Emisor,
    responsible_name: str,
    responsible_document: str,
    responsible_document_type: str = "36",
    now: datetime | None = None,
    environment: MHEnvironment | None = None,
) -> dict[str, Any]:
    """
    Evento de contingencia for documents issued offline. Every document
    must carry its ContingencyInfo; the reported codes are the ones its
    DTE will be transmitted with.
    """
    now = now or datetime.now(timezone.utc)
    fec_trans, hor_trans = sv_date_time(now)

    detalle = []
    for i, document in enumerate(documents, 1):
        contingency = document.contingency
        if contingency is None:
            raise ValueError(f"El documento {document.number} no está en contingencia")
        detalle.append({
            "noItem": i,
            "codigoGeneracion": contingency.generation_code,
            "tipoDoc": document.document_type.value,
            "numeroControl": contingency.control_number,
            "fechaEmi": sv_date_time(document.issue_date)[0],
            "montoImpuesto": _f(document.totals.tax),
            "tipoContingencia": int(contingency.reason.value),
            "motivoContingencia": (
                contingency.description if contingency.reason == ContingencyType.OTRO
                else CONTINGENCY_TYPES[contingency.reason]
            ),
        })

    fec_inicio, hor_inicio = sv_date_time(min(d.contingency.queued_at for d in documents))

    return {
        "identificacion": {
            "version": CONTINGENCY_VERSION,
            "ambiente": environment_code(environment),
            "codigoGeneracion": generate_codigo_generacion(),
            "fTransmision": fec_trans,
            "hTransmision": hor_trans,
        },
        "emisor": {
            "nit": issuer.nit,
            "nombre": issuer.nombre,
            "nombreResponsable": responsible_name.strip(),
            "tipoDocResponsable": responsible_document_type,
            "numeroDocResponsable": responsible_document.strip(),
            "tipoEstablecimiento": issuer.tipo_establecimiento,
            "codEstableMH": settings.codigo_establecimiento,
            "codPuntoVenta": settings.codigo_punto_venta,
            "telefono": issuer.telefono or "00000000",
            "correo": issuer.correo,
        },
        "detalleDTE": detalle,
        "motivo": {
            "fInicio": fec_inicio,
            "fFin": fec_trans,
            "hInicio": hor_inicio,
            "hFin": hor_trans,
        },
    }


def build_qr_url(document: Document, environment: MHEnvironment | None = None) -> str:
    """{base}?ambiente={env}&codGen={generation_code}&fechaEmi={dd-MM-yyyy}"""
    if not document.generation_code:
        raise ValueError("El documento no tiene código de generación")
    return (
        f"{get_qr_base_url(environment)}?ambiente={environment_code(environment)}"
        f"&codGen={document.generation_code}&fechaEmi={qr_date(document.issue_date)}"
    )
