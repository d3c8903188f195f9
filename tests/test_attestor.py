"""
Tests for venmorph.attestation.attestor

Covers:
- Lifecycle states, fatal configuration errors and graceful stop
- Ledger polling order and the monotonic watermark
- Exactly-once evaluation of transaction hashes
- Retry after a failed submission
- Request refresh and expiry eviction while running
"""
import asyncio

import aiohttp
import pytest

from venmorph.attestation.attestor import AttestorService, AttestorState
from venmorph.models.models import AttestationOutcome, RequestStatus
from venmorph.utilities.exceptions import MissingConfigurationException, TransientNetworkException
from tests.fakes import (
    FakeEVMClient,
    OTHER_RECIPIENT,
    XRP,
    make_request,
    make_tx,
)


async def initialized(service):
    await service.initialize()
    return service


async def unreachable_quote(asset_symbol, asset_amount):
    raise TransientNetworkException('fake-rpc', 'timeout')


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize(self, service, ledger_client, evm_client):
        assert service.state is AttestorState.UNINITIALIZED

        await service.initialize()

        assert service.state is AttestorState.INITIALIZING
        assert ledger_client.connected and evm_client.connected
        assert 42 in service.request_cache
        assert service.last_processed_ledger == 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize('missing', ['attestor_private_key', 'request_manager_address'])
    async def test_missing_configuration_is_fatal(self, config, ledger_client, evm_client, missing):
        setattr(config, missing, None)
        service = AttestorService(config, ledger_client, evm_client)

        with pytest.raises(MissingConfigurationException):
            await service.initialize()

        assert not ledger_client.connected

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service, ledger_client):
        await service.start()
        assert service.state is AttestorState.RUNNING

        await asyncio.sleep(0.05)
        await service.stop()

        assert service.state is AttestorState.STOPPED
        assert service.is_running is False
        assert ledger_client.closed
        assert all(task.done() for task in service._tasks)

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, service):
        await service.start()
        await service.stop()
        await service.stop()

        assert service.state is AttestorState.STOPPED

    @pytest.mark.asyncio
    async def test_concurrent_stops_share_one_shutdown(self, service, ledger_client):
        await service.start()

        await asyncio.gather(service.stop(), service.stop())

        assert service.state is AttestorState.STOPPED
        assert ledger_client.closed

    @pytest.mark.asyncio
    async def test_running_service_attests_new_payment(self, service, ledger_client, evm_client):
        await service.start()

        ledger_client.add_ledger(101, [make_tx(ledger_index=101)])
        for _ in range(100):
            if evm_client.submissions:
                break
            await asyncio.sleep(0.01)
        await service.stop()

        assert len(evm_client.submissions) == 1
        assert 42 not in service.request_cache

    @pytest.mark.asyncio
    async def test_tick_errors_do_not_stop_the_loop(self, service, ledger_client, evm_client):
        ledger_client.failing_ledgers.add(101)
        await service.start()
        ledger_client.add_ledger(101, [make_tx(ledger_index=101)])
        await asyncio.sleep(0.05)

        ledger_client.failing_ledgers.clear()
        for _ in range(100):
            if evm_client.submissions:
                break
            await asyncio.sleep(0.01)
        await service.stop()

        assert len(evm_client.submissions) == 1


class TestLedgerPolling:
    @pytest.mark.asyncio
    async def test_processes_ledgers_in_order(self, service, ledger_client):
        await initialized(service)
        for ledger_index in (101, 102, 103):
            ledger_client.add_ledger(ledger_index, [])

        await service.poll_ledgers()

        assert ledger_client.fetched == [101, 102, 103]
        assert service.last_processed_ledger == 103

    @pytest.mark.asyncio
    async def test_no_new_ledgers(self, service, ledger_client):
        await initialized(service)

        await service.poll_ledgers()

        assert ledger_client.fetched == []
        assert service.last_processed_ledger == 100

    @pytest.mark.asyncio
    async def test_failed_ledger_is_fetched_again_next_tick(self, service, ledger_client):
        await initialized(service)
        for ledger_index in (101, 102, 103):
            ledger_client.add_ledger(ledger_index, [])
        ledger_client.failing_ledgers.add(102)

        with pytest.raises(TransientNetworkException):
            await service.poll_ledgers()
        assert service.last_processed_ledger == 101

        ledger_client.failing_ledgers.clear()
        await service.poll_ledgers()

        assert ledger_client.fetched == [101, 102, 103]
        assert service.last_processed_ledger == 103

    @pytest.mark.asyncio
    async def test_watermark_never_decreases(self, service, ledger_client):
        await initialized(service)
        watermarks = [service.last_processed_ledger]

        for ledger_index in (101, 102):
            ledger_client.add_ledger(ledger_index, [])
            await service.poll_ledgers()
            watermarks.append(service.last_processed_ledger)

        # A lagging node reporting an older validated ledger
        ledger_client.validated_index = 95
        await service.poll_ledgers()
        watermarks.append(service.last_processed_ledger)

        assert watermarks == sorted(watermarks)
        assert watermarks[-1] == 102


class TestTransactionProcessing:
    @pytest.mark.asyncio
    async def test_matching_payment_is_attested_and_evicted(self, service, ledger_client, evm_client):
        await initialized(service)
        tx = make_tx(ledger_index=101, amount=990 * XRP)
        ledger_client.add_ledger(101, [tx])

        await service.poll_ledgers()

        assert evm_client.submissions[0][:3] == (42, tx.hash, 990 * XRP)
        assert 42 not in service.request_cache
        assert evm_client.requests[42].status is RequestStatus.PAID

    @pytest.mark.asyncio
    async def test_underpayment_is_not_attested(self, service, ledger_client, evm_client):
        await initialized(service)
        ledger_client.add_ledger(101, [make_tx(ledger_index=101, amount=989_990_000)])

        await service.poll_ledgers()

        assert evm_client.submissions == []
        assert 42 in service.request_cache

    @pytest.mark.asyncio
    async def test_duplicate_hash_is_attested_once(self, service, ledger_client, evm_client):
        await initialized(service)
        # Request 43 would also match an untagged payment, so a re-evaluation would be visible
        evm_client.add_request(make_request(request_id=43))
        await service.request_cache.refresh()
        tx = make_tx(destination_tag=None)
        ledger_client.add_ledger(101, [tx, tx])

        await service.poll_ledgers()

        assert len(evm_client.submissions) == 1
        assert tx.hash in service.processed_transactions

    @pytest.mark.asyncio
    async def test_reprocessing_a_processed_hash_is_a_no_op(self, service, evm_client):
        await initialized(service)
        tx = make_tx()
        await service.process_transaction(tx)

        assert await service.process_transaction(tx) is None
        assert len(evm_client.submissions) == 1

    @pytest.mark.asyncio
    async def test_one_payment_settles_one_request(self, service, evm_client):
        await initialized(service)
        evm_client.add_request(make_request(request_id=43))
        await service.request_cache.refresh()

        await service.process_transaction(make_tx(destination_tag=None))

        assert [submission[0] for submission in evm_client.submissions] == [42]
        assert 43 in service.request_cache

    @pytest.mark.asyncio
    async def test_tag_selects_the_request(self, service, evm_client):
        await initialized(service)
        evm_client.add_request(make_request(request_id=43))
        await service.request_cache.refresh()

        await service.process_transaction(make_tx(destination_tag=43))

        assert [submission[0] for submission in evm_client.submissions] == [43]

    @pytest.mark.asyncio
    async def test_tag_for_unknown_request_is_ignored(self, service, evm_client):
        await initialized(service)

        await service.process_transaction(make_tx(destination_tag=7))

        assert evm_client.submissions == []

    @pytest.mark.asyncio
    async def test_non_payment_is_marked_processed(self, service, evm_client):
        await initialized(service)
        tx = make_tx(transaction_type='TrustSet')

        await service.process_transaction(tx)

        assert tx.hash in service.processed_transactions
        assert evm_client.submissions == []

    @pytest.mark.asyncio
    async def test_payment_to_unrelated_address(self, service, evm_client):
        await initialized(service)

        await service.process_transaction(make_tx(destination=OTHER_RECIPIENT, destination_tag=None))

        assert evm_client.submissions == []


class TestSubmissionFailure:
    @pytest.mark.asyncio
    async def test_failed_submission_keeps_request_cached(self, service, evm_client):
        await initialized(service)
        evm_client.fail_next_submissions = 1

        result = await service.process_transaction(make_tx(tx_hash='A' * 64))

        assert result.outcome is AttestationOutcome.FAILED
        assert 42 in service.request_cache
        assert 'A' * 64 in service.processed_transactions

    @pytest.mark.asyncio
    async def test_next_matching_payment_retries(self, service, evm_client):
        await initialized(service)
        evm_client.fail_next_submissions = 1
        await service.process_transaction(make_tx(tx_hash='A' * 64))

        result = await service.process_transaction(make_tx(tx_hash='B' * 64))

        assert result.outcome is AttestationOutcome.SUBMITTED
        assert [submission[1] for submission in evm_client.submissions] == ['A' * 64, 'B' * 64]
        assert 42 not in service.request_cache

    @pytest.mark.asyncio
    async def test_quote_failure_retries_the_ledger(self, config, ledger_client):
        evm_client = FakeEVMClient(
            [make_request(request_id=0, asset_symbol='USDC', asset_amount=10)],
            quotes={'USDC': 100 * XRP},
        )
        service = await initialized(AttestorService(config, ledger_client, evm_client))
        unrelated = make_tx(tx_hash='C' * 64, destination=OTHER_RECIPIENT, destination_tag=None)
        payment = make_tx(tx_hash='D' * 64, destination_tag=0)
        ledger_client.add_ledger(101, [unrelated, payment])
        evm_client.calculate_xrp_amount = unreachable_quote

        with pytest.raises(TransientNetworkException):
            await service.poll_ledgers()

        assert service.last_processed_ledger == 100
        assert unrelated.hash in service.processed_transactions
        assert payment.hash not in service.processed_transactions
        assert evm_client.submissions == []

        del evm_client.calculate_xrp_amount
        await service.poll_ledgers()

        assert service.last_processed_ledger == 101
        assert [submission[:2] for submission in evm_client.submissions] == [(0, payment.hash)]
        assert 0 not in service.request_cache

    @pytest.mark.asyncio
    async def test_transport_error_during_submission_retries_the_ledger(self, service, ledger_client, evm_client):
        await initialized(service)
        tx = make_tx(ledger_index=101)
        ledger_client.add_ledger(101, [tx])
        evm_client.next_submission_error = aiohttp.ServerDisconnectedError()

        with pytest.raises(aiohttp.ServerDisconnectedError):
            await service.poll_ledgers()
        assert service.last_processed_ledger == 100
        assert not service.submitter.has_submitted(42)

        await service.poll_ledgers()

        assert service.last_processed_ledger == 101
        assert len(evm_client.submissions) == 2
        assert 42 not in service.request_cache


class TestRequestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_adds_new_and_drops_expired(self, config, ledger_client):
        evm_client = FakeEVMClient([make_request(request_id=0, expiry=1_000)])
        service = AttestorService(config, ledger_client, evm_client, clock=lambda: 2_000)
        await initialized(service)
        evm_client.add_request(make_request(request_id=1, expiry=5_000))

        await service.refresh_requests()

        assert [request.id for request in service.request_cache.pending_requests()] == [1]
