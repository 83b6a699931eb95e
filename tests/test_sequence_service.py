"""
Tests for warehouse-scoped sequence numbers
"""

import threading
from datetime import datetime

from stock_ledger.app.ledger_models import TransactionCounter
from stock_ledger.app.services.sequence_service import (
    get_next_sequence, receive_scope, issue_scope, transfer_scope, adjust_scope, damage_scope,
    format_receive_number, format_issue_number, format_transfer_number,
    format_adjust_number, format_damage_number
)


class TestNumberFormats:

    def test_receive_number_carries_date_and_three_digits(self):
        number = format_receive_number("BKK", 7, on=datetime(2024, 3, 9, 15, 30))
        assert number == "RCV-BKK-20240309-007"

    def test_document_numbers_are_zero_padded_to_five(self):
        assert format_issue_number("BKK", 42) == "ISS-BKK-00042"
        assert format_transfer_number("CNX", 1) == "TRF-CNX-00001"
        assert format_adjust_number("BKK", 123456) == "ADJ-BKK-123456"

    def test_damage_number_includes_upper_cased_role(self):
        assert format_damage_number("BKK", "user", 3) == "DMG-BKK-USER-00003"

    def test_scope_keys(self):
        assert receive_scope("BKK") == "receive:BKK"
        assert issue_scope(4) == "issue:4"
        assert transfer_scope(4) == "transfer:4"
        assert adjust_scope("BKK") == "adjust:BKK"
        assert damage_scope(4, "admin") == "damage:4:admin"


class TestGetNextSequence:

    def test_missing_counter_starts_at_one(self, db):
        assert get_next_sequence(db, "issue:1") == 1
        db.commit()

        counter = db.query(TransactionCounter).filter_by(scope_key="issue:1").one()
        assert counter.sequence == 1

    def test_increments_per_call(self, db):
        values = [get_next_sequence(db, "issue:1") for _ in range(3)]
        db.commit()
        assert values == [1, 2, 3]

    def test_scopes_are_independent(self, db):
        get_next_sequence(db, "issue:1")
        get_next_sequence(db, "issue:1")
        assert get_next_sequence(db, "issue:2") == 1
        assert get_next_sequence(db, "receive:BKK") == 1
        db.commit()

    def test_rollback_returns_the_number(self, db):
        get_next_sequence(db, "issue:1")
        db.commit()

        assert get_next_sequence(db, "issue:1") == 2
        db.rollback()

        assert get_next_sequence(db, "issue:1") == 2
        db.commit()

    def test_concurrent_callers_get_distinct_consecutive_values(self, session_factory):
        results = []
        errors = []
        lock = threading.Lock()

        def worker():
            session = session_factory()
            try:
                value = get_next_sequence(session, "transfer:1")
                session.commit()
                with lock:
                    results.append(value)
            except Exception as exc:  # pragma: no cover - reported below
                with lock:
                    errors.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(results) == list(range(1, 13))
