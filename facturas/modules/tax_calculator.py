"""
FACTURAS-SV — TaxCalculator
Computes document totals from line items, per document type.

REGLAS:
- Los precios unitarios incluyen IVA: iva = total - total/1.13 (NO total * 0.13)
- 14 (Sujeto Excluido): sin IVA, retención de renta 10%
- 11 (Exportación): sin IVA ni retenciones
- Agente de retención: ivaRete1 = (total/1.13) * 1%, siempre sobre la base sin IVA
- 03 (CCF): totalPagar = base sin IVA - ivaRete1
- Redondeo a 2 decimales, mitad lejos de cero, en cada paso
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from facturas.core.catalogs import TaxRegime, document_type_info
from facturas.core.config import settings
from facturas.schemas.models import LineItem, TipoDTE, Totals

ZERO = Decimal("0.00")


def round_currency(value: Decimal, scale: int | None = None) -> Decimal:
    """Round half away from zero to the configured number of decimals."""
    places = settings.rounding_scale if scale is None else scale
    return Decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def compute_totals(
    items: Iterable[LineItem],
    document_type: TipoDTE | str,
    customer_has_retention: bool = False,
    tax_factor: Decimal | float | str | None = None,
) -> Totals:
    """
    Compute the Totals of a document.

    Args:
        items: Line items (quantity × IVA-inclusive unit price)
        document_type: DTE type code
        customer_has_retention: Customer is a designated IVA withholding agent
        tax_factor: Override of settings.tax_factor (1.13)

    Returns:
        Totals, frozen
    """
    info = document_type_info(document_type)
    factor = settings.tax_factor if tax_factor is None else Decimal(str(tax_factor))
    if factor <= 0:
        raise ValueError(f"Factor de impuesto inválido: {factor}")

    items = list(items)
    total = round_currency(sum((round_currency(i.line_total) for i in items), ZERO))
    is_ccf = TipoDTE(document_type) == TipoDTE.CCF
    common = {
        "total_amount": total,
        "is_ccf": is_ccf,
        "total_items": len(items),
        "version": info.version,
    }

    if info.regime == TaxRegime.EXPORTACION:
        return Totals(sub_total=total, total_without_tax=total, total_pagar=total, **common)

    if info.regime == TaxRegime.SUJETO_EXCLUIDO:
        rete_renta = round_currency(total * settings.income_retention_rate)
        return Totals(
            sub_total=total,
            total_without_tax=total,
            rete_renta=rete_renta,
            total_pagar=total - rete_renta,
            **common,
        )

    base = total / factor
    tax = round_currency(total - base)
    total_without_tax = round_currency(base)
    iva_rete1 = (
        round_currency(base * settings.iva_retention_rate)
        if customer_has_retention else ZERO
    )
    total_pagar = total_without_tax - iva_rete1 if is_ccf else total

    return Totals(
        sub_total=total - tax,
        tax=tax,
        iva_rete1=iva_rete1,
        total_without_tax=total_without_tax,
        total_pagar=total_pagar,
        **common,
    )
