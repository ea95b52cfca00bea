# services/calculator.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — SEVERANCE CALCULATION
# ============================================================================
# Estimated amounts owed on an indirect termination (rescisão indireta).
# Pure function of the order input; used by the preview route and the PDF.
# ============================================================================

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Union

from schemas.order_definitions import CalculationInput

CENTS = Decimal("0.01")

SALDO_SALARIO = "Saldo de Salário"
AVISO_PREVIO = "Aviso Prévio Indenizado"
DECIMO_TERCEIRO = "13º Salário Proporcional"
FERIAS_VENCIDAS = "Férias Vencidas"
FERIAS_PROPORCIONAIS = "Férias Proporcionais"
TERCO_CONSTITUCIONAL = "1/3 Constitucional sobre Férias"
MULTA_FGTS = "Multa de 40% do FGTS (Estimativa)"
TOTAL_GERAL = "TOTAL GERAL ESTIMADO"

FGTS_MONTHLY_RATE = Decimal("0.08")
FGTS_FINE_RATE = Decimal("0.40")


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def months_worked(order: CalculationInput) -> int:
    """Calendar months between start and end, counting the last one if its day was reached."""
    start, end = order.start_date, order.end_date
    months = (end.year - start.year) * 12 + (end.month - start.month)
    return months + (1 if end.day >= start.day else 0)


def calculate_breakdown(order: CalculationInput) -> Dict[str, Decimal]:
    """
    Line items in display order, ending with the total.

    Returns an empty dict when either date is missing or the end date is
    before the start date.
    """
    start, end = order.start_date, order.end_date
    if start is None or end is None or end < start:
        return {}

    salary = order.last_salary
    monthly_twelfth = salary / 12
    total_months = months_worked(order)

    saldo = salary / 30 * end.day
    # The end month counts toward the 13th once its 15th day is worked
    months_13th = end.month if end.day >= 15 else end.month - 1
    decimo_terceiro = monthly_twelfth * months_13th
    vencidas = salary * order.vacation_periods
    proporcionais = monthly_twelfth * (total_months % 12)
    terco = (vencidas + proporcionais) / 3
    aviso = salary
    multa = salary * FGTS_MONTHLY_RATE * total_months * FGTS_FINE_RATE

    lines = {
        SALDO_SALARIO: _cents(saldo),
        AVISO_PREVIO: _cents(aviso),
        DECIMO_TERCEIRO: _cents(decimo_terceiro),
        FERIAS_VENCIDAS: _cents(vencidas),
        FERIAS_PROPORCIONAIS: _cents(proporcionais),
        TERCO_CONSTITUCIONAL: _cents(terco),
        MULTA_FGTS: _cents(multa),
    }
    lines[TOTAL_GERAL] = sum(lines.values(), Decimal("0"))
    return lines


def format_brl(value: Union[Decimal, int, float]) -> str:
    """pt-BR currency: 1234.5 -> 'R$ 1.234,50'."""
    amount = _cents(Decimal(str(value)))
    sign = "-" if amount < 0 else ""
    grouped = f"{abs(amount):,.2f}"  # 1,234.50
    grouped = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {grouped}"
