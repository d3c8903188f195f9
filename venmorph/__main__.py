"""
Run the attestor: `python -m venmorph [path/to/config.toml]`

Exit codes:
    0: stopped by SIGINT/SIGTERM
    1: fatal initialization failure
"""
import asyncio
import signal
import sys
from typing import Callable, List, Optional

from loguru import logger

from venmorph.attestation.attestor import AttestorService
from venmorph.attestation.audit import AttestationAuditLog
from venmorph.chains.evm_client import FlareRequestManagerClient
from venmorph.chains.xrpl_client import XRPLLedgerClient
from venmorph.configuration.configuration import AttestorConfig, load_config
from venmorph.utilities.exceptions import VenmorphException
from venmorph.utilities.log_setup import configure_logging

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_service(config: AttestorConfig) -> AttestorService:
    config.validate()
    ledger_client = XRPLLedgerClient(config.xrpl_url)
    evm_client = FlareRequestManagerClient(
        rpc_url=config.evm_rpc_url,
        chain_id=config.evm_chain_id,
        contract_address=config.request_manager_address,
        private_key=config.attestor_private_key,
        confirmations=config.confirmations,
        receipt_timeout=config.receipt_timeout_s,
    )
    audit_log = AttestationAuditLog.from_url(config.database_url) if config.database_url else None
    return AttestorService(config, ledger_client, evm_client, audit_log)


async def run(config: AttestorConfig, build: Callable[[AttestorConfig], AttestorService] = build_service) -> int:
    try:
        service = build(config)
    except (VenmorphException, ValueError) as e:
        logger.critical(f"run: Invalid attestor configuration: {e}")
        return 1

    try:
        await service.start()
    except VenmorphException as e:
        logger.critical(f"run: Failed to start attestor: {e}")
        await service.stop()
        return 1

    stop_requested = asyncio.Event()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"run: Received {sig.name}, shutting down gracefully")
        stop_requested.set()

    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, handle_signal, sig)
    try:
        await stop_requested.wait()
        await service.stop()
    finally:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    config_path = argv[0] if argv else None
    try:
        config = load_config(config_path)
    except VenmorphException as e:
        configure_logging()
        logger.critical(f"main: {e}")
        return 1
    configure_logging(config.log_level)
    logger.info("main: Starting Venmorph attestor service")
    logger.debug(f"main: Configuration {config.describe()}")
    return asyncio.run(run(config))


if __name__ == '__main__':
    sys.exit(main())
