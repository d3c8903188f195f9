import pytest

from venmorph.attestation.attestor import AttestorService
from venmorph.configuration.configuration import AttestorConfig
from tests.fakes import FakeEVMClient, FakeLedgerClient, make_request


@pytest.fixture
def config():
    return AttestorConfig(
        attestor_private_key='0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80',
        request_manager_address='0x5FbDB2315678afecb367f032d93F642f64180aa3',
        poll_interval_ms=10,
        request_refresh_interval_ms=10,
    )


@pytest.fixture
def evm_client():
    return FakeEVMClient([make_request(request_id=42)])


@pytest.fixture
def ledger_client():
    return FakeLedgerClient(validated_index=100)


@pytest.fixture
def service(config, ledger_client, evm_client):
    return AttestorService(config, ledger_client, evm_client)
