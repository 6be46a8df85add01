"""
FACTURAS-SV: Dependencias FastAPI
==================================
Singletons del almacén, la bóveda, el cliente DTE y el ciclo de vida.
"""
import logging
from functools import lru_cache

from supabase import create_client

from facturas.core.config import settings
from facturas.mh.hacienda_client import hacienda_client
from facturas.modules.lifecycle import DocumentLifecycleManager
from facturas.modules.numbering import DocumentNumberAllocator
from facturas.services.credential_vault import CredentialVault
from facturas.services.document_store import (
    DocumentStore, InMemoryDocumentStore, SupabaseDocumentStore,
)

logger = logging.getLogger(__name__)


# ── Singletons ──

@lru_cache()
def get_store() -> DocumentStore:
    """Supabase si está configurado, si no en memoria."""
    if settings.supabase_url and settings.supabase_service_key:
        return SupabaseDocumentStore(
            create_client(settings.supabase_url, settings.supabase_service_key))
    logger.warning("SUPABASE_URL not set; documents are kept in memory")
    return InMemoryDocumentStore()


@lru_cache()
def get_vault() -> CredentialVault:
    return CredentialVault()


@lru_cache()
def get_manager() -> DocumentLifecycleManager:
    """Lifecycle manager singleton. Locks and in-flight set live here."""
    store = get_store()
    return DocumentLifecycleManager(
        store=store,
        allocator=DocumentNumberAllocator(store),
        submission_client=hacienda_client,
        invalidation_client=hacienda_client,
        contingency_client=hacienda_client,
        vault=get_vault(),
    )
