from app.schemas.job import JobKind


CALLSHEET_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "date": {"type": "string", "description": "Shooting date of the callsheet in YYYY-MM-DD format"},
        "projectName": {"type": "string"},
        "productionCompanies": {"type": "array", "items": {"type": "string"}},
        "locations": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Physical filming locations (addresses or place names)",
        },
    },
    "required": ["date", "projectName", "productionCompanies", "locations"],
}

INVOICE_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "totalAmount": {"type": "number", "description": "Final total amount, numeric only"},
        "currency": {"type": "string", "description": "ISO currency code, EUR when not stated"},
        "invoiceNumber": {"type": "string", "nullable": True},
        "invoiceDate": {"type": "string", "description": "YYYY-MM-DD", "nullable": True},
        "vendorName": {"type": "string", "nullable": True},
        "purpose": {"type": "string", "nullable": True},
    },
    "required": ["totalAmount"],
}


def create_callsheet_prompt() -> str:
    base_prompt = """
    You extract structured data from film and TV production callsheets.
    Your output must strictly follow the JSON format provided in the response schema.

    OBJECTIVE:
    - date: the shooting day of this callsheet, as YYYY-MM-DD.
    - projectName: the production title as printed (not the episode or unit name).
    - productionCompanies: every production company credited on the sheet.
    - locations: every physical filming location the crew must travel to.
    """

    location_rules = """
    LOCATION RULES:
    - Include set and shooting locations with a street address or a recognisable place name.
    - Give each location once, as complete as the document allows (street, number, city).
    - Exclude unit base, catering, parking, hospitals and crew hotels unless they are also a set.
    - Exclude phone numbers, contact names and timings.
    - Never invent an address that is not in the document.
    """

    format_rules = """
    FORMAT RULES:
    - Convert dates written as DD/MM/YYYY or in words to YYYY-MM-DD.
    - Return an empty productionCompanies list when none are credited.
    - Return ONLY valid JSON.
    """
    return base_prompt + location_rules + format_rules


def create_invoice_prompt() -> str:
    return """
    You are an expert invoice data extractor. Extract from the attached invoice:

    REQUIRED:
    - totalAmount: the final amount to pay, including taxes. Number only.
    - currency: the currency code (EUR, USD, GBP...). Default to "EUR" if not explicit.

    OPTIONAL (null when absent or unclear):
    - invoiceNumber: invoice number or reference.
    - invoiceDate: issue date as YYYY-MM-DD.
    - vendorName: company or person issuing the invoice.
    - purpose: short concept only if clearly stated (e.g. "Fuel", "Hotel", "Parking"), at most eight words.

    RULES:
    - Use the grand total, never a subtotal or a line item.
    - Remove currency symbols and thousands separators; use a dot as decimal separator
      (e.g. "1.234,56" becomes 1234.56).
    - Return ONLY valid JSON matching the schema.
    """


def build_instruction(kind: JobKind) -> tuple[str, dict]:
    """Instruction text and response schema for a job kind."""
    if JobKind(kind) == JobKind.CALLSHEET:
        return create_callsheet_prompt(), CALLSHEET_RESPONSE_SCHEMA
    return create_invoice_prompt(), INVOICE_RESPONSE_SCHEMA
