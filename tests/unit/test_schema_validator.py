from backoffice.tools.schema_validator import (
    InvoiceLite,
    RmaAdjustment,
    ValidationOutcome,
    validate_invoice_lite,
    validate_rma_adjustment,
)


def test_invoice_lite_accepts_numeric_strings():
    outcome = validate_invoice_lite({"id": "INV-1", "client": "Acme", "status": "issued", "balance": "12.50", "gl_journal_id": "GL-1"})

    assert outcome.ok
    assert isinstance(outcome.value, InvoiceLite)
    assert outcome.value.balance == 12.5
    assert outcome.value.kind == "invoice_lite"

def test_invoice_lite_defaults():
    outcome = validate_invoice_lite({"id": 42})

    assert outcome.ok
    assert outcome.value.id == "42"
    assert outcome.value.balance == 0.0
    assert outcome.value.gl_journal_id is None

def test_invoice_lite_errors():
    outcome = validate_invoice_lite({"client": 7, "balance": "lots"})

    assert not outcome.ok
    assert outcome.value is None
    assert outcome.errors == [
        "Missing required field: id",
        "Field 'client' expected string, got int",
        "Field 'balance' is not a number: 'lots'",
    ]

def test_non_mapping_payload():
    outcome = validate_rma_adjustment(["not", "a", "row"])
    assert outcome.errors == ["Payload must be an object, got list"]

def test_rma_adjustment_reads_journal_from_first_adjustment():
    outcome = validate_rma_adjustment({
        "id": "RMA-2024-001-line-1",
        "artifact_type": "credit_memo",
        "amount": 300,
        "accounting_adjustments": [{"gl_journal_id": "GL-20240101000000-abc"}],
    })

    assert outcome.ok
    assert isinstance(outcome.value, RmaAdjustment)
    assert outcome.value.gl_journal_id == "GL-20240101000000-abc"
    assert outcome.value.posted_at is None

def test_rma_adjustment_rejects_unknown_artifact_and_bool_amount():
    outcome = validate_rma_adjustment({"id": "A1", "artifact_type": "gift", "amount": True})

    assert not outcome.ok
    assert "Field 'artifact_type' has unknown value 'gift'" in outcome.errors
    assert "Field 'amount' expected finite number, got bool" in outcome.errors

def test_outcome_round_trips_tagged_value():
    outcome = validate_rma_adjustment({"id": "A1", "artifact_type": "rtv", "amount": 172.5})

    restored = ValidationOutcome.model_validate(outcome.model_dump())
    assert isinstance(restored.value, RmaAdjustment)
