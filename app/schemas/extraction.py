"""Validated shapes of model output.

Model responses are untrusted: every payload goes through `validate_extraction`
before any of it reaches the database.
"""

from __future__ import annotations

import math
import re
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, field_validator

from app.schemas.job import JobKind

_DATE_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}$")

ProjectText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=160)]
AddressText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=300)]


def _blank_to_none(v: Any) -> Any:
	if isinstance(v, str) and not v.strip():
		return None
	return v


class CallsheetExtraction(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	date: str
	project_name: ProjectText = Field(alias="projectName")
	production_companies: List[ProjectText] = Field(default_factory=list, alias="productionCompanies")
	locations: List[AddressText] = Field(min_length=1)

	@field_validator("date")
	@classmethod
	def validate_date(cls, v: str) -> str:
		v = v.strip()
		if not _DATE_ISO.match(v):
			raise ValueError("date must be YYYY-MM-DD")
		return v

	@field_validator("production_companies", mode="before")
	@classmethod
	def default_companies(cls, v: Any) -> Any:
		return [] if v is None else v


class InvoiceExtraction(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	total_amount: float = Field(alias="totalAmount", ge=0, le=10_000_000)
	currency: str = Field(default="EUR", min_length=3, max_length=8)
	invoice_number: Optional[str] = Field(default=None, alias="invoiceNumber", max_length=64)
	invoice_date: Optional[str] = Field(default=None, alias="invoiceDate")
	vendor_name: Optional[str] = Field(default=None, alias="vendorName", max_length=120)
	purpose: Optional[str] = Field(default=None, max_length=120)

	@field_validator("total_amount", mode="before")
	@classmethod
	def normalize_amount(cls, v: Any) -> Any:
		if isinstance(v, str):
			normalized = re.sub(r"\s+", "", v.strip()).replace(",", ".", 1)
			if not normalized:
				return v
			try:
				return float(normalized)
			except ValueError:
				return v
		return v

	@field_validator("total_amount")
	@classmethod
	def finite_amount(cls, v: float) -> float:
		if not math.isfinite(v):
			raise ValueError("totalAmount must be a finite number")
		return v

	@field_validator("currency", mode="before")
	@classmethod
	def normalize_currency(cls, v: Any) -> Any:
		if v is None:
			return "EUR"
		if isinstance(v, str):
			return v.strip().upper() or "EUR"
		return v

	@field_validator("invoice_number", "vendor_name", "purpose", mode="before")
	@classmethod
	def strip_optional(cls, v: Any) -> Any:
		v = _blank_to_none(v)
		return v.strip() if isinstance(v, str) else v

	@field_validator("invoice_date", mode="before")
	@classmethod
	def validate_invoice_date(cls, v: Any) -> Any:
		v = _blank_to_none(v)
		if isinstance(v, str):
			v = v.strip()
			if not _DATE_ISO.match(v):
				raise ValueError("invoiceDate must be YYYY-MM-DD")
		return v


class ExtractionRejected(BaseModel):
	"""Explicit validation-failure variant returned instead of raising."""
	kind: JobKind
	issues: List[str]

	@property
	def reason(self) -> str:
		return f"invalid_{self.kind.value}_extraction:" + "; ".join(self.issues)


Extraction = Union[CallsheetExtraction, InvoiceExtraction]

_MODELS = {
	JobKind.CALLSHEET: CallsheetExtraction,
	JobKind.INVOICE: InvoiceExtraction,
}


def validate_extraction(kind: JobKind, payload: Dict[str, Any]) -> Union[Extraction, ExtractionRejected]:
	"""Validate a parsed model payload for the given job kind."""
	model = _MODELS[JobKind(kind)]
	try:
		return model.model_validate(payload)
	except ValidationError as e:
		issues = []
		for err in e.errors():
			loc = ".".join(str(p) for p in err.get("loc", ()))
			issues.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
		return ExtractionRejected(kind=JobKind(kind), issues=issues)
