import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

import toml
from loguru import logger

from venmorph.utilities.exceptions import ConfigurationException, MissingConfigurationException

XRPL_NETWORKS = {
    'mainnet': 'wss://xrplcluster.com',
    'testnet': 'wss://s.altnet.rippletest.net:51233',
    'devnet': 'wss://s.devnet.rippletest.net:51233',
}

# Coston2 testnet
DEFAULT_EVM_CHAIN_ID = 114
DEFAULT_EVM_RPC_URL = 'https://coston2-api.flare.network/ext/bc/C/rpc'

# Environment variable -> (AttestorConfig field, converter)
ENVIRONMENT_KEYS = {
    'XRPL_NETWORK': ('xrpl_network', str),
    'FLARE_CHAIN_ID': ('evm_chain_id', int),
    'FLARE_RPC_URL': ('evm_rpc_url', str),
    'ATTESTOR_PRIVATE_KEY': ('attestor_private_key', str),
    'REQUEST_MANAGER_ADDRESS': ('request_manager_address', str),
    'POLL_INTERVAL': ('poll_interval_ms', int),
    'REQUEST_REFRESH_INTERVAL': ('request_refresh_interval_ms', int),
    'CONFIRMATIONS': ('confirmations', int),
    'BATCH_SIZE': ('batch_size', int),
    'RECEIPT_TIMEOUT': ('receipt_timeout_s', int),
    'DATABASE_URL': ('database_url', str),
    'LOG_LEVEL': ('log_level', str),
}

# TOML section -> {key: AttestorConfig field}
TOML_SECTIONS = {
    'xrpl': {'network': 'xrpl_network'},
    'evm': {
        'chain_id': 'evm_chain_id',
        'rpc_url': 'evm_rpc_url',
        'request_manager_address': 'request_manager_address',
    },
    'attestor': {
        'poll_interval': 'poll_interval_ms',
        'request_refresh_interval': 'request_refresh_interval_ms',
        'confirmations': 'confirmations',
        'batch_size': 'batch_size',
        'receipt_timeout': 'receipt_timeout_s',
    },
    'database': {'url': 'database_url'},
    'logging': {'level': 'log_level'},
}


@dataclass
class AttestorConfig:
    xrpl_network: str = 'testnet'
    evm_chain_id: int = DEFAULT_EVM_CHAIN_ID
    evm_rpc_url: str = DEFAULT_EVM_RPC_URL
    attestor_private_key: Optional[str] = None
    request_manager_address: Optional[str] = None
    poll_interval_ms: int = 10_000
    request_refresh_interval_ms: int = 30_000
    confirmations: int = 1
    batch_size: int = 10
    receipt_timeout_s: int = 120
    database_url: Optional[str] = None
    log_level: str = 'INFO'

    @property
    def xrpl_url(self) -> str:
        try:
            return XRPL_NETWORKS[self.xrpl_network]
        except KeyError:
            raise ConfigurationException(
                f"Unknown XRPL network '{self.xrpl_network}', expected one of {sorted(XRPL_NETWORKS)}"
            )

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def request_refresh_interval(self) -> float:
        return self.request_refresh_interval_ms / 1000

    def validate(self) -> None:
        """Raise if the attestor cannot start with this configuration.

        The signing key and contract address have no sensible defaults, so their absence
        is a MissingConfigurationException; everything else is a ConfigurationException.
        """
        if not self.attestor_private_key:
            raise MissingConfigurationException('ATTESTOR_PRIVATE_KEY')
        if not self.request_manager_address:
            raise MissingConfigurationException('REQUEST_MANAGER_ADDRESS')

        # Raises for unknown networks
        self.xrpl_url

        for name in ('poll_interval_ms', 'request_refresh_interval_ms', 'batch_size', 'receipt_timeout_s'):
            if getattr(self, name) <= 0:
                raise ConfigurationException(f"{name} must be positive, got {getattr(self, name)}")
        if self.confirmations < 1:
            raise ConfigurationException(f"confirmations must be at least 1, got {self.confirmations}")

    def describe(self) -> Dict[str, Any]:
        """Config values safe to log (the signing key is masked)"""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        if values['attestor_private_key']:
            values['attestor_private_key'] = '***'
        return values


def _coerce(field_name: str, value: Any, converter) -> Any:
    try:
        return converter(value)
    except (TypeError, ValueError):
        raise ConfigurationException(f"Invalid value for {field_name}: {value!r}")


def load_config(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AttestorConfig:
    """Build the attestor configuration.

    Defaults are overlaid by the optional TOML file, which is in turn overlaid by
    environment variables. The signing key is only ever read from the environment.

    Args:
        config_path (str): Path to a TOML file. Missing files are an error.
        environ (Mapping[str, str]): Environment to read, defaults to os.environ

    Returns:
        AttestorConfig: unvalidated configuration
    """
    environ = os.environ if environ is None else environ
    config = AttestorConfig()
    converters = {field_name: converter for field_name, converter in ENVIRONMENT_KEYS.values()}

    if config_path:
        try:
            document = toml.load(config_path)
        except (OSError, toml.TomlDecodeError) as e:
            raise ConfigurationException(f"Could not read config file {config_path}: {e}")

        for section, keys in TOML_SECTIONS.items():
            for key, field_name in keys.items():
                if key in document.get(section, {}):
                    value = document[section][key]
                    setattr(config, field_name, _coerce(field_name, value, converters[field_name]))
        logger.debug(f"load_config: Loaded settings from {config_path}")

    for env_key, (field_name, converter) in ENVIRONMENT_KEYS.items():
        value = environ.get(env_key)
        if value is None or value == '':
            continue
        setattr(config, field_name, _coerce(field_name, value, converter))

    return config
