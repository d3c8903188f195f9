"""
Tests for venmorph.attestation.audit

Covers:
- Recording attestation results to a SQLite database
- Database errors do not propagate into attestation
"""
import pytest
from sqlalchemy.exc import OperationalError

from venmorph.attestation.audit import AttestationAuditLog
from venmorph.models.models import AttestationOutcome, AttestationResult


@pytest.fixture
def audit_log(tmp_path):
    return AttestationAuditLog.from_url(f"sqlite:///{tmp_path / 'audit.db'}")


def result(outcome, request_id=42, **kwargs):
    return AttestationResult(request_id=request_id, xrpl_tx_hash='A' * 64, outcome=outcome, paid_amount=990_000_000, **kwargs)


class TestAuditLog:
    def test_records_results_in_order(self, audit_log):
        audit_log.record(result(AttestationOutcome.FAILED, notes='simulated network error'))
        audit_log.record(result(AttestationOutcome.SUBMITTED, response_tx_hash='0x' + 'ab' * 32))
        audit_log.record(result(AttestationOutcome.SUBMITTED, request_id=43))

        rows = audit_log.results_for_request(42)

        assert [row.outcome for row in rows] == ['FAILED', 'SUBMITTED']
        assert rows[0].notes == 'simulated network error'
        assert rows[1].response_tx_hash == '0x' + 'ab' * 32
        assert rows[1].paid_amount_drops == 990_000_000
        assert rows[1].recorded_at is not None

    def test_unknown_request(self, audit_log):
        assert audit_log.results_for_request(7) == []

    def test_database_errors_are_logged_not_raised(self):
        class BrokenSession:
            rolled_back = False
            closed = False

            def add(self, row):
                pass

            def commit(self):
                raise OperationalError('INSERT', {}, Exception('disk I/O error'))

            def rollback(self):
                BrokenSession.rolled_back = True

            def close(self):
                BrokenSession.closed = True

        audit_log = AttestationAuditLog(BrokenSession)

        audit_log.record(result(AttestationOutcome.SUBMITTED))

        assert BrokenSession.rolled_back
        assert BrokenSession.closed
