from schemas.order_definitions import OrderInput
from services.renderer import PdfRenderer, render_artifact


def test_renders_pdf(ana):
    data = render_artifact(ana)
    assert data.startswith(b"%PDF")
    assert data.rstrip().endswith(b"%%EOF")


def test_same_input_same_bytes(ana):
    assert render_artifact(ana) == render_artifact(ana)


def test_different_input_different_bytes(ana):
    other = ana.model_copy(update={"irregularities": []})
    assert render_artifact(ana) != render_artifact(other)


def test_markup_in_customer_text_is_escaped():
    order = OrderInput.model_validate({
        "name": "<b>Ana & Co</b>",
        "email": "ana@x.com",
        "irregularities": ["Jornada > 10h <sem> pausa"],
    })
    assert render_artifact(order).startswith(b"%PDF")


def test_renders_without_breakdown():
    order = OrderInput.model_validate({"email": "ana@x.com", "startDate": "2023-01-01"})
    assert render_artifact(order).startswith(b"%PDF")


async def test_async_renderer(ana):
    data = await PdfRenderer(timeout=30).render(ana)
    assert data == render_artifact(ana)
