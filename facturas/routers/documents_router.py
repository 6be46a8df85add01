"""
FACTURAS-SV: Router de Documentos
==================================
Endpoints REST del ciclo de vida: creación, edición, envío,
anulación, contingencia, auditoría, QR y catálogos.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from facturas.modules import invalidation_policy
from facturas.modules.tax_calculator import compute_totals
from facturas.schemas.models import (
    ContingencyReport, CreateDocumentRequest, Document, Emisor, LineItem,
    ServiceCredentials, TipoDTE, Totals,
)

# ── Schemas ──

class ItemsUpdateRequest(BaseModel):
    items: list[LineItem]
    customer_has_retention: Optional[bool] = None


class InvalidateDocumentRequest(BaseModel):
    reason: str = Field(..., examples=["1", "other"])
    custom_reason: Optional[str] = None
    responsible_name: str
    responsible_document: str = Field(..., examples=["06141212711033"])
    issuer: Emisor


class MarkModifiedRequest(BaseModel):
    note: Optional[str] = None


class QueueContingencyRequest(BaseModel):
    reason: str = Field(..., examples=["1"])
    description: Optional[str] = None


class SendContingencyRequest(BaseModel):
    issuer: Emisor
    responsible_name: str
    responsible_document: str = Field(..., examples=["06141212711033"])


class TotalsPreviewRequest(BaseModel):
    document_type: TipoDTE
    items: list[LineItem]
    customer_has_retention: bool = False


def create_documents_router(get_manager) -> APIRouter:
    """
    Crea router de documentos con inyección de dependencias.

    Args:
        get_manager: Dependency que retorna DocumentLifecycleManager
    """
    router = APIRouter(prefix="/api/v1", tags=["Documentos"])

    # ── CONFIGURACIÓN ──

    @router.put("/companies/{company_id}/credentials", status_code=204)
    async def save_credentials(
        company_id: str, data: ServiceCredentials, manager=Depends(get_manager),
    ):
        """Guardar credenciales MH y clave del certificado de la empresa."""
        manager.vault.store(company_id, data)

    # ── DOCUMENTOS ──

    @router.post("/documents", response_model=Document, status_code=201)
    async def create_document(data: CreateDocumentRequest, manager=Depends(get_manager)):
        return await manager.create(data)

    @router.get("/documents/{document_id}", response_model=Document)
    async def get_document(document_id: str, manager=Depends(get_manager)):
        return manager.get(document_id)

    @router.put("/documents/{document_id}/items", response_model=Document)
    async def update_items(
        document_id: str, data: ItemsUpdateRequest, manager=Depends(get_manager),
    ):
        """Editar productos de un borrador (solo Nueva)."""
        return await manager.update_items(document_id, data.items, data.customer_has_retention)

    @router.post("/documents/{document_id}/submit", response_model=Document)
    async def submit_document(document_id: str, manager=Depends(get_manager)):
        """Enviar a Hacienda. Espera el resultado (Completada o error)."""
        return await manager.submit(document_id)

    @router.post("/documents/{document_id}/invalidate", response_model=Document)
    async def invalidate_document(
        document_id: str, data: InvalidateDocumentRequest, manager=Depends(get_manager),
    ):
        return await manager.invalidate(
            document_id,
            reason=data.reason,
            custom_reason=data.custom_reason,
            responsible_name=data.responsible_name,
            responsible_document=data.responsible_document,
            issuer=data.issuer,
        )

    @router.post("/documents/{document_id}/modified", response_model=Document)
    async def mark_modified(
        document_id: str, data: MarkModifiedRequest, manager=Depends(get_manager),
    ):
        return manager.mark_modified(document_id, data.note)

    @router.get("/documents/{document_id}/qr")
    async def qr_url(document_id: str, manager=Depends(get_manager)):
        return {"url": manager.qr_url(document_id)}

    # ── CONTINGENCIA ──

    @router.post("/documents/{document_id}/contingency", response_model=Document)
    async def queue_contingency(
        document_id: str, data: QueueContingencyRequest, manager=Depends(get_manager),
    ):
        """Emitir un borrador sin conexión (queda Nueva hasta el reporte)."""
        return manager.queue_contingency(document_id, data.reason, data.description)

    @router.get("/companies/{company_id}/contingency", response_model=list[Document])
    async def pending_contingency(company_id: str, manager=Depends(get_manager)):
        return manager.pending_contingency(company_id)

    @router.post("/companies/{company_id}/contingency/report", response_model=ContingencyReport)
    async def send_contingency(
        company_id: str, data: SendContingencyRequest, manager=Depends(get_manager),
    ):
        """Reportar el evento de contingencia y transmitir los documentos pendientes."""
        return await manager.send_contingency(
            company_id,
            issuer=data.issuer,
            responsible_name=data.responsible_name,
            responsible_document=data.responsible_document,
        )

    # ── CATÁLOGOS & CÁLCULOS ──

    @router.get("/invalidation-reasons")
    async def invalidation_reasons():
        return invalidation_policy.available_reasons()

    @router.post("/totals/preview", response_model=Totals)
    async def preview_totals(data: TotalsPreviewRequest):
        """Totales sin crear documento (para el formulario)."""
        return compute_totals(data.items, data.document_type, data.customer_has_retention)

    return router
