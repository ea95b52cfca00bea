from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from schemas.order_definitions import CalculationInput, ConfirmationEvent, OrderInput


@pytest.mark.parametrize("fields", [
    {"last_salary": "3000", "start_date": "2022-01-10", "vacation_periods": 2},
    {"lastSalary": "3000", "startDate": "2022-01-10", "vacationPeriods": 2},
    {"last-salary": "3000", "start-date": "2022-01-10", "ferias-vencidas": "2"},
])
def test_field_aliases(fields):
    parsed = CalculationInput.model_validate(fields)
    assert parsed.last_salary == Decimal("3000")
    assert parsed.start_date == date(2022, 1, 10)
    assert parsed.vacation_periods == 2


def test_blank_form_fields():
    parsed = CalculationInput.model_validate({"last-salary": "", "start-date": " ", "ferias-vencidas": ""})
    assert parsed.last_salary == Decimal("0")
    assert parsed.start_date is None
    assert parsed.vacation_periods == 0


def test_order_input_is_frozen(ana):
    with pytest.raises(ValidationError):
        ana.email = "other@x.com"


def test_contact_aliases_and_notes():
    order = OrderInput.model_validate({
        "email": "  ana@x.com ",
        "contact": "+55 11 90000-0000",
        "irregularities": ["FGTS não depositado", "", "  "],
    })
    assert order.email == "ana@x.com"
    assert order.whatsapp == "+55 11 90000-0000"
    assert order.irregularities == ["FGTS não depositado"]


@pytest.mark.parametrize("email", ["", "ana", "@x.com", "ana@"])
def test_email_rejected(email):
    with pytest.raises(ValidationError):
        OrderInput.model_validate({"email": email})


def test_confirmation_event_is_payment():
    assert ConfirmationEvent(kind="payment", payment_id="1").is_payment
    assert not ConfirmationEvent(kind="payment").is_payment
    assert not ConfirmationEvent(kind="merchant_order", payment_id="1").is_payment
