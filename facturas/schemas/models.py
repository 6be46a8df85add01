"""
FACTURAS-SV Pydantic Schemas
Domain models for documents, totals and the collaborator payloads.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────────────────────

class TipoDTE(str, Enum):
    FACTURA = "01"
    CCF = "03"
    NOTA_REMISION = "04"
    NOTA_CREDITO = "05"
    NOTA_DEBITO = "06"
    LIQUIDACION = "08"
    EXPORTACION = "11"
    SUJETO_EXCLUIDO = "14"


class EstadoDTE(str, Enum):
    NUEVA = "Nueva"
    SINCRONIZANDO = "Sincronizando"
    COMPLETADA = "Completada"
    ANULADA = "Anulada"
    MODIFICADA = "Modificada"  # history marker only; see Document.modified


class InvalidationReason(str, Enum):
    """Motivo de anulación (wire codes 1-4)."""
    ERROR_INFORMACION = "1"
    DEVOLUCION_PRODUCTO = "2"
    ACUERDO_PARTES = "3"
    OTRO = "4"


class ContingencyType(str, Enum):
    """Tipo de contingencia (wire codes 1-5)."""
    MH_NO_DISPONIBLE = "1"
    EMISOR_NO_DISPONIBLE = "2"
    SIN_INTERNET = "3"
    SIN_ENERGIA = "4"
    OTRO = "5"


# ─────────────────────────────────────────────────────────────
# LINE ITEMS & TOTALS
# ─────────────────────────────────────────────────────────────

class LineItem(BaseModel):
    """One product line. Prices are IVA-inclusive."""
    quantity: int = Field(..., ge=1, le=100)
    unit_price: Decimal = Field(..., ge=0, description="Precio unitario (USD)")
    product_id: str
    product_name: str = ""
    observation: str = ""

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


class Totals(BaseModel):
    """Document totals. Always produced by the tax calculator."""
    total_amount: Decimal = Decimal("0.00")
    sub_total: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    rete_renta: Decimal = Decimal("0.00")
    iva_rete1: Decimal = Decimal("0.00")
    total_without_tax: Decimal = Decimal("0.00")
    total_pagar: Decimal = Decimal("0.00")
    is_ccf: bool = False
    total_items: int = 0
    version: int = 1

    model_config = ConfigDict(frozen=True)


# ─────────────────────────────────────────────────────────────
# DOCUMENT
# ─────────────────────────────────────────────────────────────

class StatusChange(BaseModel):
    """Audit trail entry."""
    status: EstadoDTE
    at: datetime = Field(default_factory=_utcnow)
    note: Optional[str] = None


class ContingencyInfo(BaseModel):
    """
    Offline issuance record. The codes are fixed when the document is
    queued so the contingency report and the later DTE agree.
    """
    reason: ContingencyType
    description: Optional[str] = None
    queued_at: datetime = Field(default_factory=_utcnow)
    generation_code: str
    control_number: str
    reported_at: Optional[datetime] = None
    report_seal: Optional[str] = None

    @property
    def reported(self) -> bool:
        return self.reported_at is not None


class Document(BaseModel):
    """A DTE owned by one company."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    number: str
    document_type: TipoDTE
    issue_date: datetime = Field(default_factory=_utcnow)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    status: EstadoDTE = EstadoDTE.NUEVA

    # Issued by MH upon acceptance (all-or-nothing)
    generation_code: Optional[str] = None
    control_number: Optional[str] = None
    reception_seal: Optional[str] = None

    customer_id: str
    customer_has_retention: bool = False
    company_id: str
    items: list[LineItem] = Field(default_factory=list)
    totals: Totals = Field(default_factory=Totals)
    invalidated: bool = False
    modified: bool = False
    contingency: Optional[ContingencyInfo] = None

    # Nota de Remisión / Sujeto Excluido
    delivery_name: str = ""
    delivery_document: str = ""
    observations: str = ""
    receptor: str = ""
    receptor_document: str = ""

    # Nota de Crédito / Débito
    related_document_number: Optional[str] = None
    related_document_type: Optional[TipoDTE] = None
    related_document_date: Optional[datetime] = None

    history: list[StatusChange] = Field(default_factory=list)

    @model_validator(mode="after")
    def _acceptance_ids_all_or_nothing(self) -> "Document":
        ids = (self.generation_code, self.control_number, self.reception_seal)
        present = [bool(v) for v in ids]
        if any(present) and not all(present):
            raise ValueError(
                "generation_code, control_number y reception_seal deben estar "
                "todos presentes o todos ausentes"
            )
        return self

    @property
    def is_accepted(self) -> bool:
        return bool(self.generation_code and self.control_number and self.reception_seal)


class CreateDocumentRequest(BaseModel):
    """Form data for a new document."""
    company_id: str
    document_type: TipoDTE
    customer_id: Optional[str] = None
    customer_has_retention: bool = False
    items: list[LineItem] = Field(default_factory=list)
    issue_date: Optional[datetime] = None
    delivery_name: str = ""
    delivery_document: str = ""
    observations: str = ""
    receptor: str = ""
    receptor_document: str = ""
    related_document_number: Optional[str] = None
    related_document_type: Optional[TipoDTE] = None
    related_document_date: Optional[datetime] = None


# ─────────────────────────────────────────────────────────────
# COLLABORATOR PAYLOADS
# ─────────────────────────────────────────────────────────────

class ServiceCredentials(BaseModel):
    """Per-company credentials for the DTE service."""
    user: str = Field(..., description="NIT usado como usuario MH")
    password: str = Field(..., description="Contraseña de Oficina Virtual")
    certificate_key: Optional[str] = Field(None, description="Clave del certificado")


class AcceptanceIds(BaseModel):
    """Identifiers returned by MH for an accepted DTE."""
    generation_code: Optional[str] = None
    control_number: Optional[str] = None
    reception_seal: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.generation_code and self.control_number and self.reception_seal)

    @property
    def missing(self) -> list[str]:
        return [
            name for name in ("generation_code", "control_number", "reception_seal")
            if not getattr(self, name)
        ]


class Direccion(BaseModel):
    departamento: str
    municipio: str
    complemento: str


class Emisor(BaseModel):
    """Issuer block of the invalidation request."""
    nit: str
    nrc: str
    nombre: str
    cod_actividad: str
    desc_actividad: str
    nombre_comercial: Optional[str] = None
    tipo_establecimiento: str = "01"
    direccion: Direccion
    telefono: str = ""
    correo: str


class PolicyDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class RequestValidation(BaseModel):
    valid: bool
    error: Optional[str] = None
    field: Optional[str] = None


class ContingencySubmission(BaseModel):
    document_id: str
    number: str
    success: bool
    error: Optional[str] = None


class ContingencyReport(BaseModel):
    """Outcome of reporting and transmitting a company's contingency queue."""
    report_seal: Optional[str] = None
    reported: int = 0
    submitted: int = 0
    failed: int = 0
    results: list[ContingencySubmission] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────
# GENERIC
# ─────────────────────────────────────────────────────────────

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str
    code: Optional[str] = None
    field: Optional[str] = None
    mh_observaciones: Optional[list[str]] = None


class HealthResponse(BaseModel):
    """Health check."""
    status: str = "ok"
    version: str
    environment: str
    api_base_url: str
