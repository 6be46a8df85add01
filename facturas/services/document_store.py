"""
FACTURAS-SV: Almacén de documentos
===================================
Contrato de persistencia usado por el ciclo de vida. El consecutivo se
obtiene con una consulta indexada por (empresa, tipo DTE), nunca
recorriendo la colección completa.

Adaptadores:
    InMemoryDocumentStore  : pruebas y uso embebido
    SupabaseDocumentStore  : tabla "dte_documents" + RPC "get_max_document_number"
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from supabase import Client as SupabaseClient

from facturas.schemas.models import Document, EstadoDTE, TipoDTE

logger = logging.getLogger(__name__)


def parse_number(value: str | None) -> Optional[int]:
    """Integer value of a document number, or None if it isn't one."""
    if value is None:
        return None
    text = str(value).strip()
    # ASCII only: "²".isdigit() is True but int() rejects it
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


class DocumentStore(ABC):
    """Contrato de persistencia de documentos."""

    @abstractmethod
    def get(self, document_id: str) -> Optional[Document]:
        """Busca un documento por su ID."""

    @abstractmethod
    def insert(self, document: Document) -> None:
        """Guarda un documento nuevo."""

    @abstractmethod
    def update(self, document: Document) -> None:
        """Reemplaza un documento existente."""

    @abstractmethod
    def max_number(self, company_id: str, document_type: TipoDTE | str) -> Optional[int]:
        """Mayor número entero emitido para (empresa, tipo), o None."""

    @abstractmethod
    def list_pending_contingency(self, company_id: str) -> list[Document]:
        """Documentos Nueva encolados en contingencia, en orden de encolado."""


class InMemoryDocumentStore(DocumentStore):
    """Documents kept in a dict, with a max-number index per (company, type)."""

    def __init__(self):
        self._documents: dict[str, Document] = {}
        self._max_index: dict[tuple[str, str], int] = {}

    def get(self, document_id: str) -> Optional[Document]:
        doc = self._documents.get(document_id)
        return doc.model_copy(deep=True) if doc else None

    def insert(self, document: Document) -> None:
        if document.id in self._documents:
            raise KeyError(f"Documento duplicado: {document.id}")
        self._documents[document.id] = document.model_copy(deep=True)
        self._index(document)

    def update(self, document: Document) -> None:
        if document.id not in self._documents:
            raise KeyError(f"Documento no encontrado: {document.id}")
        self._documents[document.id] = document.model_copy(deep=True)
        self._index(document)

    def max_number(self, company_id: str, document_type: TipoDTE | str) -> Optional[int]:
        return self._max_index.get((company_id, TipoDTE(document_type).value))

    def list_pending_contingency(self, company_id: str) -> list[Document]:
        pending = [
            d.model_copy(deep=True) for d in self._documents.values()
            if d.company_id == company_id
            and d.contingency is not None and d.status == EstadoDTE.NUEVA
        ]
        return sorted(pending, key=lambda d: d.contingency.queued_at)

    def list(self, company_id: str | None = None) -> list[Document]:
        return [
            d.model_copy(deep=True) for d in self._documents.values()
            if company_id is None or d.company_id == company_id
        ]

    def _index(self, document: Document) -> None:
        number = parse_number(document.number)
        if number is None:
            return
        key = (document.company_id, document.document_type.value)
        if number > self._max_index.get(key, 0):
            self._max_index[key] = number


class SupabaseDocumentStore(DocumentStore):
    """Supabase adapter. The max number comes from an indexed RPC."""

    TABLE = "dte_documents"

    def __init__(self, supabase: SupabaseClient):
        self.db = supabase

    def get(self, document_id: str) -> Optional[Document]:
        result = self.db.table(self.TABLE).select("*").eq(
            "id", document_id).maybe_single().execute()
        if not result or not result.data:
            return None
        return Document.model_validate(result.data)

    def insert(self, document: Document) -> None:
        self.db.table(self.TABLE).insert(document.model_dump(mode="json")).execute()

    def update(self, document: Document) -> None:
        self.db.table(self.TABLE).update(
            document.model_dump(mode="json", exclude={"id"})
        ).eq("id", document.id).execute()

    def max_number(self, company_id: str, document_type: TipoDTE | str) -> Optional[int]:
        result = self.db.rpc("get_max_document_number", {
            "p_company_id": company_id,
            "p_tipo_dte": TipoDTE(document_type).value,
        }).execute()
        if not result.data:
            return None
        value = result.data[0].get("max_number") if isinstance(result.data, list) else result.data
        return parse_number(value)

    def list_pending_contingency(self, company_id: str) -> list[Document]:
        result = self.db.table(self.TABLE).select("*").eq(
            "company_id", company_id).eq("status", EstadoDTE.NUEVA.value).execute()
        documents = [Document.model_validate(row) for row in (result.data or [])]
        pending = [d for d in documents if d.contingency is not None]
        return sorted(pending, key=lambda d: d.contingency.queued_at)
