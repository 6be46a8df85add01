"""
FACTURAS-SV — DocumentLifecycleManager
Drives a DTE through its status state machine.

    Nueva ──submit──▶ Sincronizando ──Accepted──▶ Completada ──invalidate──▶ Anulada
      ▲                    │
      └────RolledBack──────┘

mark_modified() never changes the status: it sets the modified flag and
appends a Modificada entry to the history, so the document keeps every
transition it had.

Submission:
1. Credentials + certificate key required (CertificateRequired, no network)
2. Status flips to Sincronizando and is persisted before the call
3. Collaborator call bounded by asyncio.wait_for (timeout = network failure)
4. Outcome is a tagged result, Accepted(ids) or RolledBack(cause),
   applied by _apply_submission_outcome()

Contingency (offline issuance):
- queue_contingency() fixes the codes of a Nueva document and keeps it Nueva
- send_contingency() reports the queued documents as one evento de
  contingencia, then submits each of them; only runs when called

Only one submission or invalidation may be in flight per document.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from facturas.core.catalogs import CONTINGENCY_TYPES
from facturas.core.config import MHEnvironment, settings
from facturas.core.exceptions import (
    CertificateRequired, DocumentError, DocumentNotFound, IncompleteAcceptanceError,
    PolicyError, StateError, SubmissionError, ValidationError,
)
from facturas.mh.documents import (
    build_contingency_report, build_invalidation_document, build_qr_url,
)
from facturas.mh.hacienda_client import ContingencyClient, InvalidationClient, SubmissionClient
from facturas.modules import invalidation_policy
from facturas.modules.numbering import DocumentNumberAllocator
from facturas.modules.tax_calculator import compute_totals
from facturas.schemas.models import (
    AcceptanceIds, ContingencyInfo, ContingencyReport, ContingencySubmission,
    ContingencyType, CreateDocumentRequest, Document, Emisor, EstadoDTE, LineItem,
    ServiceCredentials, StatusChange,
)
from facturas.services.credential_vault import CredentialVault
from facturas.services.document_store import DocumentStore, parse_number
from facturas.utils.dte_helpers import generate_codigo_generacion, generate_numero_control

logger = logging.getLogger(__name__)

MIN_CONTINGENCY_DESCRIPTION = 5


@dataclass(frozen=True)
class Accepted:
    ids: AcceptanceIds


@dataclass(frozen=True)
class RolledBack:
    cause: DocumentError


SubmissionOutcome = Union[Accepted, RolledBack]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short(code: Optional[str]) -> str:
    return f"{code[:8]}..." if code else "N/A"


class DocumentLifecycleManager:
    """
    Orchestrates creation, submission, invalidation and audit transitions.

    Usage:
        manager = DocumentLifecycleManager(store, allocator, client, client, vault)
        doc = await manager.create(CreateDocumentRequest(...))
        doc = await manager.submit(doc.id)
    """

    def __init__(
        self,
        store: DocumentStore,
        allocator: DocumentNumberAllocator,
        submission_client: SubmissionClient,
        invalidation_client: InvalidationClient,
        vault: CredentialVault,
        timeout: Optional[float] = None,
        environment: Optional[MHEnvironment] = None,
        contingency_client: Optional[ContingencyClient] = None,
    ):
        self.store = store
        self.allocator = allocator
        self.submission_client = submission_client
        self.invalidation_client = invalidation_client
        self.contingency_client = contingency_client
        self.vault = vault
        self.timeout = settings.submission_timeout_seconds if timeout is None else timeout
        self.environment = environment or settings.mh_environment
        self._in_flight: set[str] = set()

    # ─────────────────────────────────────────────────────────
    # HELPERS
    # ─────────────────────────────────────────────────────────

    def get(self, document_id: str) -> Document:
        document = self.store.get(document_id)
        if document is None:
            raise DocumentNotFound(f"Documento no encontrado: {document_id}")
        return document

    @staticmethod
    def _record(document: Document, entry: EstadoDTE, note: Optional[str] = None) -> None:
        now = _utcnow()
        document.updated_at = now
        document.history.append(StatusChange(status=entry, at=now, note=note))

    def _transition(self, document: Document, status: EstadoDTE, note: Optional[str] = None) -> None:
        previous = document.status
        document.status = status
        self._record(document, status, note)
        logger.info(
            f"Document {document.number} ({document.document_type.value}): "
            f"{previous.value} → {status.value}"
        )

    def _require_credentials(self, company_id: str) -> ServiceCredentials:
        credentials = self.vault.get(company_id)
        if credentials is None:
            raise CertificateRequired(
                "La empresa no tiene credenciales de Hacienda configuradas")
        if not credentials.certificate_key:
            raise CertificateRequired(
                "La empresa no tiene la clave del certificado configurada")
        return credentials

    def _claim(self, document_id: str) -> None:
        if document_id in self._in_flight:
            raise StateError("El documento tiene una operación en curso")
        self._in_flight.add(document_id)

    @staticmethod
    def _validate_form(items: list[LineItem], customer_id: Optional[str]) -> None:
        if not items:
            raise ValidationError("Debe agregar al menos un producto", field="items")
        if not customer_id:
            raise ValidationError("Debe seleccionar un cliente", field="customer_id")

    # ─────────────────────────────────────────────────────────
    # CREATION & DRAFT EDITS
    # ─────────────────────────────────────────────────────────

    async def create(self, request: CreateDocumentRequest) -> Document:
        """Validate, number and store a new document in Nueva."""
        self._validate_form(request.items, request.customer_id)

        items = [item.model_copy() for item in request.items]
        totals = compute_totals(items, request.document_type, request.customer_has_retention)
        now = _utcnow()

        async with self.allocator.reserve(request.company_id, request.document_type) as number:
            document = Document(
                number=number,
                document_type=request.document_type,
                issue_date=request.issue_date or now,
                created_at=now,
                updated_at=now,
                customer_id=request.customer_id,
                customer_has_retention=request.customer_has_retention,
                company_id=request.company_id,
                items=items,
                totals=totals,
                delivery_name=request.delivery_name,
                delivery_document=request.delivery_document,
                observations=request.observations,
                receptor=request.receptor,
                receptor_document=request.receptor_document,
                related_document_number=request.related_document_number,
                related_document_type=request.related_document_type,
                related_document_date=request.related_document_date,
                history=[StatusChange(status=EstadoDTE.NUEVA, at=now)],
            )
            self.store.insert(document)

        logger.info(
            f"Document created: {document.number} type={document.document_type.value} "
            f"company={document.company_id} total={totals.total_amount}"
        )
        return document

    async def update_items(
        self,
        document_id: str,
        items: list[LineItem],
        customer_has_retention: Optional[bool] = None,
    ) -> Document:
        """Replace the items of a draft and recompute its totals."""
        document = self.get(document_id)
        if document.status != EstadoDTE.NUEVA or document_id in self._in_flight:
            raise StateError(
                f"Solo se pueden editar documentos en estado Nueva (actual: {document.status.value})")
        self._validate_form(items, document.customer_id)

        if customer_has_retention is not None:
            document.customer_has_retention = customer_has_retention
        document.items = [item.model_copy() for item in items]
        document.totals = compute_totals(
            document.items, document.document_type, document.customer_has_retention)
        document.updated_at = _utcnow()
        self.store.update(document)
        return document

    # ─────────────────────────────────────────────────────────
    # SUBMISSION
    # ─────────────────────────────────────────────────────────

    def _begin_submission(self, document_id: str) -> tuple[Document, ServiceCredentials]:
        document = self.get(document_id)
        if document.status != EstadoDTE.NUEVA:
            raise StateError(
                f"Solo se pueden enviar documentos en estado Nueva (actual: {document.status.value})")
        credentials = self._require_credentials(document.company_id)
        self._claim(document_id)

        self._transition(document, EstadoDTE.SINCRONIZANDO)
        self.store.update(document)
        return document, credentials

    async def _call_collaborator(
        self, document: Document, credentials: ServiceCredentials,
    ) -> SubmissionOutcome:
        try:
            ids = await asyncio.wait_for(
                self.submission_client.submit(document, credentials), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            return RolledBack(SubmissionError(
                f"Timeout: el servicio DTE no respondió en {self.timeout}s",
                status_code=504, cause=e))
        except SubmissionError as e:
            return RolledBack(e)
        except Exception as e:
            logger.exception(f"Unexpected error submitting {document.number}: {e}")
            return RolledBack(SubmissionError(f"Error inesperado: {e}", cause=e))

        if not ids.complete:
            return RolledBack(IncompleteAcceptanceError(
                f"Respuesta de Hacienda incompleta, faltan: {', '.join(ids.missing)}",
                missing=ids.missing))
        return Accepted(ids)

    def _apply_submission_outcome(self, document: Document, outcome: SubmissionOutcome) -> Document:
        if isinstance(outcome, Accepted):
            document.generation_code = outcome.ids.generation_code
            document.control_number = outcome.ids.control_number
            document.reception_seal = outcome.ids.reception_seal
            self._transition(document, EstadoDTE.COMPLETADA)
            self.store.update(document)
            logger.info(
                f"DTE ACCEPTED: {document.number} codGen={_short(document.generation_code)}")
            return document

        self._transition(document, EstadoDTE.NUEVA, note=outcome.cause.message)
        self.store.update(document)
        logger.warning(f"Submission rolled back for {document.number}: {outcome.cause.message}")
        raise outcome.cause

    async def _run_submission(self, document: Document, credentials: ServiceCredentials) -> Document:
        try:
            outcome = await self._call_collaborator(document, credentials)
            return self._apply_submission_outcome(document, outcome)
        finally:
            self._in_flight.discard(document.id)

    async def submit(self, document_id: str) -> Document:
        """Submit a Nueva document and wait for the outcome."""
        document, credentials = self._begin_submission(document_id)
        return await self._run_submission(document, credentials)

    def start_submission(self, document_id: str) -> "asyncio.Task[Document]":
        """
        Flip the document to Sincronizando now and run the call in a task.
        Precondition errors are raised synchronously; outcome errors surface
        when the task is awaited.
        """
        document, credentials = self._begin_submission(document_id)
        return asyncio.ensure_future(self._run_submission(document, credentials))

    # ─────────────────────────────────────────────────────────
    # INVALIDATION
    # ─────────────────────────────────────────────────────────

    async def invalidate(
        self,
        document_id: str,
        reason,
        custom_reason: Optional[str],
        responsible_name: str,
        responsible_document: str,
        issuer: Emisor,
        now: Optional[datetime] = None,
    ) -> Document:
        """Invalidate a Completada document. Status only changes on success."""
        document = self.get(document_id)
        if document.status != EstadoDTE.COMPLETADA:
            raise StateError(
                f"Solo se pueden anular documentos completados (actual: {document.status.value})")

        decision = invalidation_policy.can_invalidate(document, now=now)
        if not decision.allowed:
            raise PolicyError(decision.reason)

        validation = invalidation_policy.validate_request(
            reason, custom_reason, responsible_name, responsible_document)
        if not validation.valid:
            raise PolicyError(validation.error, field=validation.field)

        credentials = self._require_credentials(document.company_id)
        request = build_invalidation_document(
            document, issuer, reason, custom_reason, responsible_name,
            responsible_document, now=now, environment=self.environment,
        )

        self._claim(document_id)
        try:
            await asyncio.wait_for(
                self.invalidation_client.invalidate(request, credentials, document.number),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Invalidation timeout for {document.number}")
            raise SubmissionError(
                f"Timeout: el servicio DTE no respondió en {self.timeout}s",
                status_code=504, cause=e) from e
        except SubmissionError as e:
            logger.warning(f"Invalidation rejected for {document.number}: {e.message}")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error invalidating {document.number}: {e}")
            raise SubmissionError(f"Error inesperado: {e}", cause=e) from e
        finally:
            self._in_flight.discard(document_id)

        document.invalidated = True
        self._transition(
            document, EstadoDTE.ANULADA,
            note=invalidation_policy.reason_text(reason, custom_reason))
        self.store.update(document)
        logger.info(f"DTE INVALIDATED: {document.number} codGen={_short(document.generation_code)}")
        return document

    # ─────────────────────────────────────────────────────────
    # CONTINGENCY
    # ─────────────────────────────────────────────────────────

    def queue_contingency(
        self,
        document_id: str,
        reason,
        description: Optional[str] = None,
    ) -> Document:
        """
        Mark a Nueva document as issued offline. Its codigoGeneracion and
        numeroControl are fixed now; the status stays Nueva until
        send_contingency() transmits it.
        """
        document = self.get(document_id)
        if document.status != EstadoDTE.NUEVA or document_id in self._in_flight:
            raise StateError(
                f"Solo documentos en estado Nueva pueden emitirse en contingencia "
                f"(actual: {document.status.value})")
        if document.contingency is not None:
            raise StateError("El documento ya está en contingencia")

        if not isinstance(reason, ContingencyType):
            try:
                reason = ContingencyType(str(reason).strip())
            except ValueError as e:
                raise ValidationError("Tipo de contingencia inválido", field="reason") from e
        description = (description or "").strip() or None
        if reason == ContingencyType.OTRO and len(description or "") < MIN_CONTINGENCY_DESCRIPTION:
            raise ValidationError(
                f"Debe describir la contingencia en al menos "
                f"{MIN_CONTINGENCY_DESCRIPTION} caracteres",
                field="description")

        tipo_dte = document.document_type.value
        document.contingency = ContingencyInfo(
            reason=reason,
            description=description,
            generation_code=generate_codigo_generacion(),
            control_number=generate_numero_control(tipo_dte, parse_number(document.number) or 0),
        )
        self._record(document, EstadoDTE.NUEVA, note=f"Contingencia: {CONTINGENCY_TYPES[reason]}")
        self.store.update(document)
        logger.warning(
            f"Document {document.number} ({tipo_dte}) queued in contingency, "
            f"reason={reason.value} codGen={_short(document.contingency.generation_code)}"
        )
        return document

    def pending_contingency(self, company_id: str) -> list[Document]:
        return self.store.list_pending_contingency(company_id)

    async def _report_contingency(
        self,
        documents: list[Document],
        credentials: ServiceCredentials,
        issuer: Emisor,
        responsible_name: str,
        responsible_document: str,
        now: Optional[datetime],
    ) -> Optional[str]:
        request = build_contingency_report(
            documents, issuer, responsible_name, responsible_document,
            now=now, environment=self.environment,
        )
        try:
            return await asyncio.wait_for(
                self.contingency_client.report_contingency(request, credentials, issuer.nit),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Contingency report timeout for {issuer.nit}")
            raise SubmissionError(
                f"Timeout: el servicio DTE no respondió en {self.timeout}s",
                status_code=504, cause=e) from e
        except SubmissionError as e:
            logger.warning(f"Contingency report rejected for {issuer.nit}: {e.message}")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error reporting contingency for {issuer.nit}: {e}")
            raise SubmissionError(f"Error inesperado: {e}", cause=e) from e

    async def send_contingency(
        self,
        company_id: str,
        issuer: Emisor,
        responsible_name: str,
        responsible_document: str,
        now: Optional[datetime] = None,
    ) -> ContingencyReport:
        """
        Report the company's unreported contingency documents, then submit
        every reported one that is still Nueva, one at a time.

        A failed report raises SubmissionError and leaves every document as
        it was. Submission failures are per document: each one rolls back to
        Nueva as usual and is counted in the result.
        """
        if self.contingency_client is None:
            raise RuntimeError("DocumentLifecycleManager has no contingency client")
        if len((responsible_name or "").strip()) < invalidation_policy.MIN_RESPONSIBLE_NAME:
            raise ValidationError(
                "Nombre del responsable demasiado corto", field="responsible_name")
        if len((responsible_document or "").strip()) < invalidation_policy.MIN_RESPONSIBLE_DOCUMENT:
            raise ValidationError(
                "Documento del responsable demasiado corto", field="responsible_document")

        pending = self.pending_contingency(company_id)
        report = ContingencyReport()
        if not pending:
            return report

        credentials = self._require_credentials(company_id)
        unreported = [d for d in pending if not d.contingency.reported]
        if unreported:
            seal = await self._report_contingency(
                unreported, credentials, issuer, responsible_name, responsible_document, now)
            reported_at = now or _utcnow()
            for document in unreported:
                document.contingency.reported_at = reported_at
                document.contingency.report_seal = seal
                self._record(document, EstadoDTE.NUEVA, note="Evento de contingencia reportado")
                self.store.update(document)
            report.reported = len(unreported)
            report.report_seal = seal
            logger.info(f"Contingency reported: company={company_id}, documents={len(unreported)}")

        for document in pending:
            try:
                await self.submit(document.id)
            except DocumentError as e:
                report.failed += 1
                report.results.append(ContingencySubmission(
                    document_id=document.id, number=document.number,
                    success=False, error=e.message))
                logger.warning(f"Contingency submission failed for {document.number}: {e.message}")
                continue
            report.submitted += 1
            report.results.append(ContingencySubmission(
                document_id=document.id, number=document.number, success=True))

        logger.info(
            f"Contingency batch done: company={company_id}, "
            f"submitted={report.submitted}, failed={report.failed}"
        )
        return report

    # ─────────────────────────────────────────────────────────
    # AUDIT & QR
    # ─────────────────────────────────────────────────────────

    def mark_modified(self, document_id: str, note: Optional[str] = None) -> Document:
        """Flag a document as modified. Its status, and what it may do next, are unchanged."""
        document = self.get(document_id)
        if document.status == EstadoDTE.ANULADA:
            raise StateError("Un documento anulado no puede modificarse")
        if document_id in self._in_flight:
            raise StateError("El documento tiene una operación en curso")
        document.modified = True
        self._record(document, EstadoDTE.MODIFICADA, note=note)
        self.store.update(document)
        logger.info(
            f"Document {document.number} ({document.document_type.value}) marked modified, "
            f"status {document.status.value}"
        )
        return document

    def qr_url(self, document_id: str) -> str:
        document = self.get(document_id)
        if not document.is_accepted:
            raise StateError("El documento aún no ha sido aceptado por Hacienda")
        return build_qr_url(document, self.environment)
