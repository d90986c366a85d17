# backend/tests/test_statement_intake.py
from __future__ import annotations

from datetime import date

import pytest

from builders import mk_owner, statement_meta
from rentledger.clients.extraction import ExtractionResult
from rentledger.errors import ConflictError, NotFoundError, ValidationError
from rentledger.services.statement_intake import ingest_extracted, ingest_records, ingest_statement


def _records():
    return [
        {"date": "2024-03-03", "description": "Miete Schmidt", "amount": 950.0, "is_deposit": True},
        {"date": "2024-03-10", "description": "Stadtwerke Utilities", "amount": 120.5, "is_deposit": False},
        {"date": "2024-03-15", "description": "Hausmeister Maintenance", "amount": -79.5},
    ]


def test_ingest_persists_unprocessed_rows_and_totals(store):
    user, account = mk_owner(store)

    r = ingest_statement(
        store,
        account_id=account.id,
        metadata=statement_meta(ending=1750.0, count=3),
        raw_transactions=_records(),
    )

    stmt = r.statement
    assert r.created == 3
    assert r.errors == []
    assert r.validation_errors == []
    assert stmt.processed is True
    assert stmt.reconciled is False
    assert stmt.balance_mismatch is False
    assert stmt.transaction_count == 3
    assert stmt.total_deposits == 950.0
    assert stmt.total_withdrawals == 200.0
    assert stmt.user_id == user.id

    rows = store.list_statement_transactions(stmt.id)
    assert [t.status for t in rows] == ["unprocessed"] * 3
    assert [t.description for t in rows] == ["Miete Schmidt", "Stadtwerke Utilities", "Hausmeister Maintenance"]
    assert all(t.category_id is None and t.reconciled is False for t in rows)


def test_sign_derives_direction_and_amount_is_stored_as_magnitude(store):
    _, account = mk_owner(store)

    r = ingest_statement(
        store,
        account_id=account.id,
        metadata=statement_meta(ending=1750.0),
        raw_transactions=_records(),
    )

    last = store.list_statement_transactions(r.statement.id)[-1]
    assert last.is_deposit is False
    assert last.amount == 79.5
    assert last.signed_amount == -79.5


def test_balance_mismatch_is_reported_but_rows_are_kept(store):
    _, account = mk_owner(store)

    r = ingest_statement(
        store,
        account_id=account.id,
        metadata=statement_meta(ending=1800.0),
        raw_transactions=_records(),
    )

    assert r.created == 3
    assert r.statement.balance_mismatch is True
    assert r.statement.processed is True
    assert len(r.validation_errors) == 1
    err = r.validation_errors[0]
    assert isinstance(err, ValidationError)
    assert err.context["expected_ending_balance"] == 1750.0
    assert len(store.list_statement_transactions(r.statement.id)) == 3


def test_balance_within_tolerance_is_accepted(store):
    _, account = mk_owner(store)

    r = ingest_statement(
        store,
        account_id=account.id,
        metadata=statement_meta(ending=1750.01),
        raw_transactions=_records(),
    )

    assert r.statement.balance_mismatch is False


def test_declared_count_mismatch_flags_statement(store):
    _, account = mk_owner(store)

    r = ingest_statement(
        store,
        account_id=account.id,
        metadata=statement_meta(ending=1750.0, count=4),
        raw_transactions=_records(),
    )

    assert r.statement.balance_mismatch is True
    assert [e.context.get("declared") for e in r.validation_errors] == [4]


def test_malformed_records_are_reported_by_index(store):
    _, account = mk_owner(store)
    raw = _records()
    raw.insert(1, {"date": "not-a-date", "description": "x", "amount": 10})
    raw.insert(3, {"date": "2024-03-11", "description": "Refund", "amount": -5, "is_deposit": True})
    raw.append("garbage")

    r = ingest_statement(
        store,
        account_id=account.id,
        metadata=statement_meta(ending=1750.0),
        raw_transactions=raw,
    )

    assert r.created == 3
    assert [e.index for e in r.errors] == [1, 3, 5]
    assert all(e.error for e in r.errors)
    assert r.statement.balance_mismatch is False


def test_reingest_into_processed_statement_conflicts(store):
    _, account = mk_owner(store)
    r = ingest_statement(
        store,
        account_id=account.id,
        metadata=statement_meta(ending=1750.0),
        raw_transactions=_records(),
    )

    with pytest.raises(ConflictError):
        ingest_records(store, r.statement.id, _records())

    assert len(store.list_statement_transactions(r.statement.id)) == 3


def test_unknown_account_is_not_found(store):
    mk_owner(store)
    with pytest.raises(NotFoundError):
        ingest_statement(store, account_id=999, metadata=statement_meta(ending=1000.0), raw_transactions=[])


def test_account_of_another_user_is_not_found(store):
    _, account = mk_owner(store)
    other, _ = mk_owner(store, email="other@example.com")
    with pytest.raises(NotFoundError):
        ingest_statement(
            store,
            account_id=account.id,
            metadata=statement_meta(ending=1000.0),
            raw_transactions=[],
            user_id=other.id,
        )


def test_invalid_metadata_is_a_validation_error(store):
    _, account = mk_owner(store)
    with pytest.raises(ValidationError):
        ingest_statement(
            store,
            account_id=account.id,
            metadata=statement_meta(start=date(2024, 3, 31), end=date(2024, 3, 1), ending=1000.0),
            raw_transactions=[],
        )


def test_ingest_extracted_maps_typed_amounts(store):
    _, account = mk_owner(store)
    extraction = ExtractionResult.model_validate(
        {
            "document_type": "bank_statement",
            "statement_period": {"start_date": "2024-03-01", "end_date": "2024-03-31"},
            "starting_balance": 100.0,
            "ending_balance": 930.0,
            "transactions": [
                {"date": "2024-03-02", "description": "Miete", "amount": 950.0, "type": "income"},
                {"date": "2024-03-05", "description": "Versicherung Insurance", "amount": 120.0, "type": "expense"},
            ],
        }
    )

    r = ingest_extracted(store, account_id=account.id, extraction=extraction)

    rows = store.list_statement_transactions(r.statement.id)
    assert [(t.is_deposit, t.amount) for t in rows] == [(True, 950.0), (False, 120.0)]
    assert r.statement.processed is True
    assert r.statement.balance_mismatch is False
    assert r.statement.start_date == date(2024, 3, 1)


def test_failed_extraction_leaves_unprocessed_statement(store):
    _, account = mk_owner(store)

    r = ingest_extracted(store, account_id=account.id, extraction=ExtractionResult.failed("timeout"))

    assert r.created == 0
    assert r.statement.processed is False
    assert r.statement.processing_error == "timeout"
    assert store.list_statement_transactions(r.statement.id) == []
