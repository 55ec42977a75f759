from app.gemini.parsing import parse_model_output
from app.gemini.prompts import build_instruction
from app.schemas.extraction import (
    CallsheetExtraction,
    ExtractionRejected,
    InvoiceExtraction,
    validate_extraction,
)
from app.schemas.job import JobKind
from app.services.extraction_services import callsheet_fields, guess_mime_type


def test_parse_plain_json_object():
    assert parse_model_output('{"a": 1}') == {"a": 1}


def test_parse_fenced_json():
    text = '```json\n{"totalAmount": 12.5}\n```'
    assert parse_model_output(text) == {"totalAmount": 12.5}


def test_parse_bare_fence():
    assert parse_model_output('```\n{"x": "y"}\n```') == {"x": "y"}


def test_parse_rejects_non_objects_and_garbage():
    assert parse_model_output("[1, 2]") is None
    assert parse_model_output("not json at all") is None
    assert parse_model_output("") is None
    assert parse_model_output(None) is None


def test_invoice_amount_with_comma_and_default_currency():
    result = validate_extraction(JobKind.INVOICE, {"totalAmount": "1 234,50", "currency": None})
    assert isinstance(result, InvoiceExtraction)
    assert result.total_amount == 1234.5
    assert result.currency == "EUR"


def test_invoice_currency_is_uppercased_and_blanks_dropped():
    result = validate_extraction(JobKind.INVOICE, {"totalAmount": 10, "currency": "usd", "vendorName": "  "})
    assert result.currency == "USD"
    assert result.vendor_name is None


def test_invoice_negative_amount_rejected():
    result = validate_extraction(JobKind.INVOICE, {"totalAmount": -3})
    assert isinstance(result, ExtractionRejected)
    assert result.reason.startswith("invalid_invoice_extraction:")
    assert "totalAmount" in result.reason


def test_invoice_bad_date_rejected():
    result = validate_extraction(JobKind.INVOICE, {"totalAmount": 3, "invoiceDate": "14/03/2025"})
    assert isinstance(result, ExtractionRejected)


def test_callsheet_requires_locations():
    payload = {"date": "2025-03-14", "projectName": "Night Shift", "locations": []}
    result = validate_extraction(JobKind.CALLSHEET, payload)
    assert isinstance(result, ExtractionRejected)
    assert result.reason.startswith("invalid_callsheet_extraction:")


def test_callsheet_fields_use_first_company_as_producer():
    payload = {
        "date": "2025-03-14",
        "projectName": " Night Shift ",
        "productionCompanies": ["Acme Films", "Other Co"],
        "locations": ["Calle Mayor 1"],
    }
    result = validate_extraction(JobKind.CALLSHEET, payload)
    assert isinstance(result, CallsheetExtraction)
    fields = callsheet_fields(result)
    assert fields["project_value"] == "Night Shift"
    assert fields["producer_value"] == "Acme Films"
    assert fields["production_companies"] == ["Acme Films", "Other Co"]


def test_callsheet_without_companies_has_no_producer():
    payload = {"date": "2025-03-14", "projectName": "X", "productionCompanies": None, "locations": ["A"]}
    fields = callsheet_fields(validate_extraction(JobKind.CALLSHEET, payload))
    assert fields["producer_value"] is None
    assert fields["production_companies"] == []


def test_guess_mime_type():
    assert guess_mime_type("u/j/scan.PDF") == "application/pdf"
    assert guess_mime_type("u/j/photo.png") == "image/png"
    assert guess_mime_type("u/j/blob") == "image/jpeg"


def test_build_instruction_per_kind():
    text, schema = build_instruction(JobKind.INVOICE)
    assert "totalAmount" in schema["properties"]
    assert text
    text, schema = build_instruction(JobKind.CALLSHEET)
    assert "locations" in schema["properties"]
