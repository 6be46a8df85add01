"""
FACTURAS-SV — DocumentNumberAllocator
Sequential 5-digit document numbers per (company, DTE type).

next_number() alone is not safe against concurrent callers: two requests
for the same key may compute the same number. DocumentNumberAllocator
serializes allocation per key, and callers insert the new document inside
reserve() so assignment and insertion form one critical section.

Usage:
    allocator = DocumentNumberAllocator(store)
    async with allocator.reserve(company_id, TipoDTE.CCF) as number:
        store.insert(Document(number=number, ...))
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from facturas.schemas.models import Document, TipoDTE
from facturas.services.document_store import DocumentStore, parse_number

logger = logging.getLogger(__name__)

NUMBER_WIDTH = 5


def format_number(value: int) -> str:
    return str(value).zfill(NUMBER_WIDTH)


def next_number(
    existing_documents: Iterable[Document],
    company_id: str,
    document_type: TipoDTE | str,
) -> str:
    """Next number for (company, type) derived from an existing document set."""
    tipo = TipoDTE(document_type)
    numbers = [
        n for n in (
            parse_number(d.number) for d in existing_documents
            if d.company_id == company_id and d.document_type == tipo
        )
        if n is not None
    ]
    return format_number(max(numbers) + 1 if numbers else 1)


class DocumentNumberAllocator:
    """Store-backed allocator with one asyncio.Lock per (company, type)."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, company_id: str, document_type: TipoDTE | str) -> asyncio.Lock:
        key = (company_id, TipoDTE(document_type).value)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def peek(self, company_id: str, document_type: TipoDTE | str) -> str:
        """Number the next allocation would return. Not a reservation."""
        current = self.store.max_number(company_id, document_type)
        return format_number((current or 0) + 1)

    @asynccontextmanager
    async def reserve(
        self, company_id: str, document_type: TipoDTE | str,
    ) -> AsyncIterator[str]:
        """Hold the (company, type) lock while the caller inserts the document."""
        async with self._lock_for(company_id, document_type):
            number = self.peek(company_id, document_type)
            logger.debug(
                f"Reserved number {number} for company={company_id}, "
                f"type={TipoDTE(document_type).value}"
            )
            yield number
