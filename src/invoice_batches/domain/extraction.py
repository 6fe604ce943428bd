"""Decoding of the free-text extraction payload into invoice data."""

import json
import logging
import re
from collections.abc import Iterable
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ExtractionPayloadError

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"```\s*$")
_INVISIBLE = re.compile("[\\ufeff\\u200b-\\u200d]")
_TAX_ID_NOISE = re.compile(r"[\s.\-/]")


def _to_decimal(value: Any) -> Any:
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        cleaned = value.strip().replace("€", "").replace(" ", "")
        if "," in cleaned and "." not in cleaned:
            cleaned = cleaned.replace(",", ".")
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}") from None
    return value


def _to_date(value: Any) -> Any:
    if isinstance(value, str) and len(value) > 10 and value[4] == "-":
        return value[:10]
    return value


def normalize_tax_id(value: str) -> str:
    """Canonical form used to match providers (upper case, no separators)."""
    return _TAX_ID_NOISE.sub("", value).upper()


class ExtractedProvider(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    tax_id: str = Field(alias="cif", min_length=1)
    email: str | None = None
    phone: str | None = None
    address: str | None = None

    @field_validator("tax_id", mode="before")
    @classmethod
    def normalize(cls, v: Any) -> Any:
        return normalize_tax_id(v) if isinstance(v, str) else v


class ExtractedItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    material_name: str = Field(alias="materialName", min_length=1)
    material_description: str | None = Field(default=None, alias="materialDescription")
    material_code: str | None = Field(default=None, alias="materialCode")
    quantity: Decimal
    unit_price: Decimal = Field(alias="unitPrice")
    total_price: Decimal = Field(alias="totalPrice")
    item_date: date | None = Field(default=None, alias="itemDate")
    work_order: str | None = Field(default=None, alias="workOrder")

    @field_validator("quantity", "unit_price", "total_price", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("item_date", mode="before")
    @classmethod
    def parse_item_date(cls, v: Any) -> Any:
        return _to_date(v)


class ExtractedInvoice(BaseModel):
    """Invoice as returned by the extraction service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    invoice_code: str = Field(alias="invoiceCode", min_length=1)
    provider: ExtractedProvider
    issue_date: date = Field(alias="issueDate")
    total_amount: Decimal = Field(alias="totalAmount")
    items: list[ExtractedItem] = Field(default_factory=list)

    @field_validator("invoice_code", mode="before")
    @classmethod
    def strip_code(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("total_amount", mode="before")
    @classmethod
    def parse_total(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("issue_date", mode="before")
    @classmethod
    def parse_issue_date(cls, v: Any) -> Any:
        return _to_date(v)

    @property
    def items_total(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0"))

    def has_totals_mismatch(self, tolerance: Decimal) -> bool:
        return totals_mismatch(self.total_amount, (i.total_price for i in self.items), tolerance)


def totals_mismatch(total_amount: Decimal, line_totals: Iterable[Decimal], tolerance: Decimal) -> bool:
    """True when the declared total and the line totals differ by more than tolerance."""
    items_total = sum(line_totals, Decimal("0"))
    return abs(items_total - total_amount) > tolerance


def recover_json(raw: str) -> dict[str, Any] | None:
    """Best-effort recovery of a JSON object from model output.

    Handles markdown fences, BOM/zero-width characters, doubly escaped JSON
    and leading or trailing prose around the object.
    """
    if not raw:
        return None
    text = _INVISIBLE.sub("", raw.strip())
    if text.startswith("```"):
        text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text)).strip()
    if text.startswith('{\\"'):
        text = (
            text.replace('\\"', '"')
            .replace("\\\\", "\\")
            .replace("\\n", "\n")
            .replace("\\r", "\r")
            .replace("\\t", "\t")
        )

    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def decode_payload(text: str | None) -> ExtractedInvoice:
    """Decode a record's payload text, raising ExtractionPayloadError when unusable."""
    if not text or not text.strip():
        raise ExtractionPayloadError("Empty extraction payload")

    data = recover_json(text)
    if data is None:
        logger.warning(f"Unparseable extraction payload: {text[:200]}")
        raise ExtractionPayloadError("Extraction payload is not valid JSON")

    try:
        return ExtractedInvoice.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ExtractionPayloadError(
            f"Missing or invalid invoice data: {fields}"
        ) from e
