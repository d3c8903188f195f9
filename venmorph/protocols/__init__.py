from .chain_clients import LedgerChainClient, EVMChainClient
