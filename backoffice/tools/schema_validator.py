"""
Light contracts for list rows read back from the document store.

Each validator checks a raw dict field by field and returns a
ValidationOutcome holding either the typed payload or the list of errors.
"""
import logging
from typing import Annotated, Any, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field

from backoffice.tools.money import is_finite

logger = logging.getLogger(__name__)

ARTIFACT_TYPES = {"credit_memo", "fee", "rtv", "repair", "disposal_fee", "rtv_charge", "repair_invoice"}

class InvoiceLite(BaseModel):
    kind: Literal["invoice_lite"] = "invoice_lite"
    id: str
    client: Optional[str] = None
    status: Optional[str] = None
    balance: float = 0.0
    gl_journal_id: Optional[str] = None

class RmaAdjustment(BaseModel):
    kind: Literal["rma_adjustment"] = "rma_adjustment"
    id: str
    artifact_type: Optional[str] = None
    amount: float = 0.0
    gl_journal_id: Optional[str] = None
    posted_at: Optional[str] = None

Payload = Annotated[Union[InvoiceLite, RmaAdjustment], Field(discriminator="kind")]

class ValidationOutcome(BaseModel):
    ok: bool
    value: Optional[Payload] = None
    errors: List[str] = []


def _id_field(row: Mapping[str, Any], errors: List[str]) -> str:
    value = row.get("id")
    if isinstance(value, bool) or not isinstance(value, (str, int)) or not str(value).strip():
        errors.append("Missing required field: id")
        return ""
    return str(value)


def _optional_str(row: Mapping[str, Any], field: str, errors: List[str]) -> Optional[str]:
    value = row.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        errors.append(f"Field '{field}' expected string, got {type(value).__name__}")
        return None
    return value


def _amount(row: Mapping[str, Any], field: str, errors: List[str]) -> float:
    value = row.get(field)
    if value is None or value == "":
        return 0.0
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            errors.append(f"Field '{field}' is not a number: {value!r}")
            return 0.0
    if not is_finite(value):
        errors.append(f"Field '{field}' expected finite number, got {type(value).__name__}")
        return 0.0
    return float(value)


def _journal_id(value: Any) -> Optional[str]:
    return str(value) if value else None


def _outcome(model, fields: dict, errors: List[str], name: str) -> ValidationOutcome:
    if errors:
        logger.debug(f"{name} rejected: {errors}")
        return ValidationOutcome(ok=False, errors=errors)
    return ValidationOutcome(ok=True, value=model(**fields))


def _as_mapping(row: Any) -> Tuple[Mapping[str, Any], List[str]]:
    if isinstance(row, Mapping):
        return row, []
    return {}, [f"Payload must be an object, got {type(row).__name__}"]


def validate_invoice_lite(row: Any) -> ValidationOutcome:
    row, errors = _as_mapping(row)
    if errors:
        return ValidationOutcome(ok=False, errors=errors)

    fields = {
        "id": _id_field(row, errors),
        "client": _optional_str(row, "client", errors),
        "status": _optional_str(row, "status", errors),
        "balance": _amount(row, "balance", errors),
        "gl_journal_id": _journal_id(row.get("gl_journal_id")),
    }
    return _outcome(InvoiceLite, fields, errors, "InvoiceLite")


def validate_rma_adjustment(row: Any) -> ValidationOutcome:
    row, errors = _as_mapping(row)
    if errors:
        return ValidationOutcome(ok=False, errors=errors)

    artifact_type = _optional_str(row, "artifact_type", errors)
    if artifact_type is not None and artifact_type not in ARTIFACT_TYPES:
        errors.append(f"Field 'artifact_type' has unknown value {artifact_type!r}")

    # Rows built from an RMA line carry the journal on their first adjustment
    gl_journal_id = row.get("gl_journal_id")
    adjustments = row.get("accounting_adjustments")
    if not gl_journal_id and isinstance(adjustments, list) and adjustments and isinstance(adjustments[0], Mapping):
        gl_journal_id = adjustments[0].get("gl_journal_id")

    posted_at = row.get("posted_at")
    fields = {
        "id": _id_field(row, errors),
        "artifact_type": artifact_type,
        "amount": _amount(row, "amount", errors),
        "gl_journal_id": _journal_id(gl_journal_id),
        "posted_at": str(posted_at) if posted_at else None,
    }
    return _outcome(RmaAdjustment, fields, errors, "RmaAdjustment")
