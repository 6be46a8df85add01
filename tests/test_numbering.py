"""
FACTURAS-SV — Numbering & DocumentStore tests
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from facturas.modules.numbering import DocumentNumberAllocator, format_number, next_number
from facturas.schemas.models import ContingencyInfo, ContingencyType, Document, EstadoDTE, TipoDTE
from facturas.services.document_store import (
    InMemoryDocumentStore, SupabaseDocumentStore, parse_number,
)


def doc(number: str, company: str = "C1", tipo: TipoDTE = TipoDTE.FACTURA) -> Document:
    return Document(number=number, document_type=tipo, customer_id="K1", company_id=company)


def queued(at: datetime) -> ContingencyInfo:
    return ContingencyInfo(
        reason=ContingencyType.MH_NO_DISPONIBLE, queued_at=at,
        generation_code="CONT-GEN", control_number="DTE-01-M001-P001-000000000000001",
    )


class TestParseAndFormat:
    @pytest.mark.parametrize("value,expected", [
        ("00001", 1), ("00042", 42), ("12345", 12345), (" 7 ", 7),
        ("A-001", None), ("", None), (None, None), ("-3", None),
        ("²", None), ("00²", None), ("٣", None), ("1_000", None), ("+5", None),
    ])
    def test_parse_number(self, value, expected):
        assert parse_number(value) == expected

    def test_format_pads_to_five(self):
        assert format_number(1) == "00001"
        assert format_number(123) == "00123"
        assert format_number(123456) == "123456"


class TestNextNumber:
    def test_first_number(self):
        assert next_number([], "C1", TipoDTE.FACTURA) == "00001"

    def test_max_plus_one(self):
        docs = [doc("00001"), doc("00007"), doc("00003")]
        assert next_number(docs, "C1", TipoDTE.FACTURA) == "00008"

    def test_scoped_by_company_and_type(self):
        docs = [doc("00050", company="C2"), doc("00020", tipo=TipoDTE.CCF), doc("00002")]
        assert next_number(docs, "C1", TipoDTE.FACTURA) == "00003"
        assert next_number(docs, "C1", TipoDTE.CCF) == "00021"
        assert next_number(docs, "C3", TipoDTE.FACTURA) == "00001"

    def test_ignores_non_numeric(self):
        docs = [doc("BORRADOR"), doc("00004")]
        assert next_number(docs, "C1", "01") == "00005"

    def test_ignores_unicode_digits(self):
        docs = [doc("²"), doc("00002")]
        assert next_number(docs, "C1", TipoDTE.FACTURA) == "00003"

    def test_store_index_skips_unicode_digits(self):
        store = InMemoryDocumentStore()
        store.insert(doc("²"))
        assert store.max_number("C1", TipoDTE.FACTURA) is None

    def test_sequential_set(self):
        docs = []
        for _ in range(12):
            docs.append(doc(next_number(docs, "C1", TipoDTE.FACTURA)))
        numbers = [d.number for d in docs]
        assert numbers == [format_number(i) for i in range(1, 13)]


class TestInMemoryStore:
    def test_max_number_index(self):
        store = InMemoryDocumentStore()
        store.insert(doc("00004"))
        store.insert(doc("00002"))
        store.insert(doc("00009", tipo=TipoDTE.CCF))
        assert store.max_number("C1", TipoDTE.FACTURA) == 4
        assert store.max_number("C1", TipoDTE.CCF) == 9
        assert store.max_number("C2", TipoDTE.FACTURA) is None

    def test_get_returns_copy(self):
        store = InMemoryDocumentStore()
        d = doc("00001")
        store.insert(d)
        fetched = store.get(d.id)
        fetched.observations = "cambiado"
        assert store.get(d.id).observations == ""

    def test_duplicate_insert(self):
        store = InMemoryDocumentStore()
        d = doc("00001")
        store.insert(d)
        with pytest.raises(KeyError):
            store.insert(d)

    def test_update_unknown(self):
        with pytest.raises(KeyError):
            InMemoryDocumentStore().update(doc("00001"))

    def test_pending_contingency(self):
        store = InMemoryDocumentStore()
        later, earlier, done, plain, other = (
            doc("00001"), doc("00002"), doc("00003"), doc("00004"), doc("00005", company="C2"))
        later.contingency = queued(datetime(2026, 3, 2, tzinfo=timezone.utc))
        earlier.contingency = queued(datetime(2026, 3, 1, tzinfo=timezone.utc))
        done.contingency = queued(datetime(2026, 3, 1, tzinfo=timezone.utc))
        done.status = EstadoDTE.COMPLETADA
        other.contingency = queued(datetime(2026, 3, 1, tzinfo=timezone.utc))
        for d in (later, earlier, done, plain, other):
            store.insert(d)
        assert [d.number for d in store.list_pending_contingency("C1")] == ["00002", "00001"]


class TestSupabaseStore:
    def setup_method(self):
        self.db = MagicMock()
        self.store = SupabaseDocumentStore(self.db)

    def test_max_number_uses_rpc(self):
        self.db.rpc.return_value.execute.return_value = MagicMock(data=[{"max_number": "00041"}])
        assert self.store.max_number("C1", TipoDTE.CCF) == 41
        self.db.rpc.assert_called_once_with(
            "get_max_document_number", {"p_company_id": "C1", "p_tipo_dte": "03"})

    def test_max_number_empty(self):
        self.db.rpc.return_value.execute.return_value = MagicMock(data=[])
        assert self.store.max_number("C1", TipoDTE.CCF) is None

    def test_get_missing(self):
        chain = self.db.table.return_value.select.return_value.eq.return_value
        chain.maybe_single.return_value.execute.return_value = None
        assert self.store.get("nope") is None
        self.db.table.assert_called_with("dte_documents")

    def test_get_found(self):
        d = doc("00003")
        chain = self.db.table.return_value.select.return_value.eq.return_value
        chain.maybe_single.return_value.execute.return_value = MagicMock(
            data=d.model_dump(mode="json"))
        fetched = self.store.get(d.id)
        assert fetched.id == d.id
        assert fetched.number == "00003"

    def test_pending_contingency_filters_queued(self):
        queued_doc = doc("00002")
        queued_doc.contingency = queued(datetime(2026, 3, 1, tzinfo=timezone.utc))
        chain = self.db.table.return_value.select.return_value.eq.return_value.eq.return_value
        chain.execute.return_value = MagicMock(data=[
            doc("00001").model_dump(mode="json"), queued_doc.model_dump(mode="json"),
        ])
        pending = self.store.list_pending_contingency("C1")
        assert [d.number for d in pending] == ["00002"]
        self.db.table.return_value.select.return_value.eq.assert_called_with("company_id", "C1")

    def test_insert_serializes(self):
        d = doc("00001")
        self.store.insert(d)
        payload = self.db.table.return_value.insert.call_args[0][0]
        assert payload["id"] == d.id
        assert payload["document_type"] == "01"


class TestAllocator:
    def test_peek_first(self):
        allocator = DocumentNumberAllocator(InMemoryDocumentStore())
        assert allocator.peek("C1", TipoDTE.FACTURA) == "00001"

    def test_concurrent_reservations_are_unique(self):
        store = InMemoryDocumentStore()
        allocator = DocumentNumberAllocator(store)

        async def create_one():
            async with allocator.reserve("C1", TipoDTE.FACTURA) as number:
                await asyncio.sleep(0)
                store.insert(doc(number))
                return number

        async def run():
            return await asyncio.gather(*(create_one() for _ in range(20)))

        numbers = asyncio.run(run())
        assert len(set(numbers)) == 20
        assert sorted(numbers) == [format_number(i) for i in range(1, 21)]

    def test_keys_are_independent(self):
        store = InMemoryDocumentStore()
        allocator = DocumentNumberAllocator(store)

        async def run():
            async with allocator.reserve("C1", TipoDTE.FACTURA) as a:
                store.insert(doc(a))
            async with allocator.reserve("C1", TipoDTE.CCF) as b:
                store.insert(doc(b, tipo=TipoDTE.CCF))
            async with allocator.reserve("C1", TipoDTE.FACTURA) as c:
                return a, b, c

        assert asyncio.run(run()) == ("00001", "00001", "00002")
