"""
Network resolution and per-phase configuration.

Each phase gets its own config object, built once at the CLI boundary from the
environment. Only ``SignConfig`` carries key material; the two online phases
have no field that could hold a private key.
"""
import importlib.resources
import json
import logging
import os
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from web3 import Web3

from .exceptions import (
    ConfigurationError, MissingApiKey, NoRpcConfiguration, UnsupportedNetwork
)

logger = logging.getLogger(__name__)

DEFAULT_ARTIFACT_PATH = os.path.join("foundry", "out", "CryptoHeir.sol", "CryptoHeir.json")
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_RECEIPT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 5.0


@dataclass(frozen=True)
class NetworkEndpoint:
    """A resolved entry of the network table."""
    name: str
    chain_id: int
    rpc_template: str

    @property
    def needs_api_key(self) -> bool:
        return "{api_key}" in self.rpc_template


class NetworkConfig:
    """
    Lookup table of supported networks, loaded from the packaged networks.json.

    Names may be canonical ("polygon-mainnet") or aliases ("polygon", and the
    names older descriptor files used, such as "matic").
    """

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    ALIASES = {
        "polygon": "polygon-mainnet",
        "arbitrum": "arbitrum-mainnet",
        "optimism": "optimism-mainnet",
        "base": "base-mainnet",
        "linea": "linea-mainnet",
        "anvil": "localhost",
        "hardhat": "localhost",
        "homestead": "mainnet",
        "matic": "polygon-mainnet",
        "matic-amoy": "polygon-amoy",
    }

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load the network table, caching it after the first read.

        Returns:
            Mapping of canonical network name to its configuration
        """
        if cls._networks_cache is None:
            resource = importlib.resources.files("cryptoheir_signer") / "networks.json"
            with resource.open("r", encoding="utf-8") as f:
                cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def supported_names(cls):
        return sorted(set(cls.load_networks()) | set(cls.ALIASES))

    @classmethod
    def canonical_name(cls, network: str) -> str:
        """
        Resolve an alias to its canonical network name.

        Raises:
            UnsupportedNetwork: If the name is neither canonical nor an alias
        """
        networks = cls.load_networks()
        name = network.strip().lower()
        name = cls.ALIASES.get(name, name)
        if name not in networks:
            raise UnsupportedNetwork(
                f"Unsupported network: {network}",
                hint=(
                    f"Supported networks: {', '.join(cls.supported_names())}. "
                    "Alternatively, set RPC_URL for a custom provider."
                ),
            )
        return name

    @classmethod
    def resolve(cls, network: str) -> NetworkEndpoint:
        """
        Resolve a network name to its chain ID and RPC endpoint template.

        Args:
            network: Canonical name or alias

        Returns:
            The resolved NetworkEndpoint

        Raises:
            UnsupportedNetwork: If the name is not in the table
        """
        name = cls.canonical_name(network)
        entry = cls.load_networks()[name]
        return NetworkEndpoint(name=name, chain_id=int(entry["chainId"]), rpc_template=entry["rpc"])

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        return cls.resolve(network).chain_id

    @classmethod
    def get_rpc_url(
        cls,
        network: Optional[str] = None,
        override: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> str:
        """
        Get the RPC URL for a network.

        Priority: explicit override, then a ``<NETWORK>_RPC_URL`` environment
        variable, then the table's endpoint template.

        Args:
            network: Network name (optional when an override is given)
            override: RPC URL used verbatim when set
            api_key: Provider API key substituted into the endpoint template

        Returns:
            RPC endpoint URL

        Raises:
            NoRpcConfiguration: If there is neither an override nor a network name
            UnsupportedNetwork: If the network name is not in the table
            MissingApiKey: If the endpoint needs an API key and none is given
        """
        if override:
            return override

        if not network:
            raise NoRpcConfiguration(
                "No RPC configuration found",
                hint="Use --network <name> with INFURA_API_KEY set, or set RPC_URL for a custom provider.",
            )

        endpoint = cls.resolve(network)

        env_var = f"{endpoint.name.upper().replace('-', '_')}_RPC_URL"
        env_url = os.environ.get(env_var)
        if env_url:
            return env_url

        if endpoint.needs_api_key:
            if not api_key:
                raise MissingApiKey(
                    f"INFURA_API_KEY is required for network {endpoint.name}",
                    hint="Either set INFURA_API_KEY or set RPC_URL for a custom provider.",
                )
            return endpoint.rpc_template.format(api_key=api_key)
        return endpoint.rpc_template

    @classmethod
    def network_name_for_chain(cls, chain_id: int) -> Optional[str]:
        """Return the canonical name of the network with this chain ID, if known."""
        for name, entry in cls.load_networks().items():
            if int(entry["chainId"]) == int(chain_id):
                return name
        return None

    @classmethod
    def explorer_for_chain(cls, chain_id: int) -> Optional[str]:
        name = cls.network_name_for_chain(chain_id)
        if name is None:
            return None
        return cls.load_networks()[name].get("explorer")

    @classmethod
    def tx_url(cls, chain_id: int, tx_hash: str) -> Optional[str]:
        """
        Get a block explorer URL for a transaction.

        Args:
            chain_id: Chain the transaction lives on
            tx_hash: Transaction hash, with or without 0x prefix

        Returns:
            Explorer URL, or None for chains without a known explorer
        """
        explorer = cls.explorer_for_chain(chain_id)
        if explorer is None:
            return None
        if not tx_hash.startswith("0x"):
            tx_hash = "0x" + tx_hash
        return f"{explorer}/tx/{tx_hash}"

    @classmethod
    def address_url(cls, chain_id: int, address: str) -> Optional[str]:
        explorer = cls.explorer_for_chain(chain_id)
        if explorer is None:
            return None
        return f"{explorer}/address/{address}"


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_number(environ: Mapping[str, str], name: str, default: float) -> float:
    value = _env(environ, name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class PrepareConfig:
    """Settings for the online prepare phase."""
    signer_address: Optional[str] = None
    rpc_url: Optional[str] = None
    infura_api_key: Optional[str] = field(default=None, repr=False)
    contract_address: Optional[str] = None
    artifact_path: str = DEFAULT_ARTIFACT_PATH
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PrepareConfig":
        environ = os.environ if environ is None else environ
        return cls(
            signer_address=_env(environ, "SIGNER_ADDRESS"),
            rpc_url=_env(environ, "RPC_URL"),
            infura_api_key=_env(environ, "INFURA_API_KEY"),
            contract_address=_env(environ, "CONTRACT_ADDRESS"),
            artifact_path=_env(environ, "CRYPTOHEIR_ARTIFACT") or DEFAULT_ARTIFACT_PATH,
            request_timeout=int(_env_number(environ, "RPC_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
        )

    def require_signer_address(self) -> str:
        """
        Get the checksummed signer address.

        Raises:
            ConfigurationError: If SIGNER_ADDRESS is unset or not an address
        """
        if not self.signer_address:
            raise ConfigurationError(
                "SIGNER_ADDRESS not set",
                hint="This is the address that will sign the transaction on the offline machine.",
            )
        if not Web3.is_address(self.signer_address):
            raise ConfigurationError(f"SIGNER_ADDRESS is not a valid address: {self.signer_address}")
        return Web3.to_checksum_address(self.signer_address)


@dataclass(frozen=True)
class SignConfig:
    """Settings for the offline sign phase. Never touches the network."""
    private_key: Optional[str] = field(default=None, repr=False)
    mnemonic: Optional[str] = field(default=None, repr=False)
    account_index: int = 0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, account_index: int = 0) -> "SignConfig":
        environ = os.environ if environ is None else environ
        return cls(
            private_key=_env(environ, "PRIVATE_KEY"),
            mnemonic=_env(environ, "MNEMONIC"),
            account_index=account_index,
        )


@dataclass(frozen=True)
class BroadcastConfig:
    """Settings for the online broadcast phase."""
    rpc_url: Optional[str] = None
    infura_api_key: Optional[str] = field(default=None, repr=False)
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BroadcastConfig":
        environ = os.environ if environ is None else environ
        return cls(
            rpc_url=_env(environ, "RPC_URL"),
            infura_api_key=_env(environ, "INFURA_API_KEY"),
            receipt_timeout=_env_number(environ, "RECEIPT_TIMEOUT", DEFAULT_RECEIPT_TIMEOUT),
            poll_interval=_env_number(environ, "RECEIPT_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            request_timeout=int(_env_number(environ, "RPC_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
        )


def make_web3(rpc_url: str, timeout: int = DEFAULT_REQUEST_TIMEOUT) -> Web3:
    """
    Create a Web3 instance for an HTTP(S) JSON-RPC endpoint.

    Plain http is accepted for local nodes; for anything else a warning is
    logged, since the endpoint sees every transaction we relay.
    """
    parsed = urllib.parse.urlparse(rpc_url)
    host = parsed.netloc.split(":")[0] if parsed.netloc else ""
    is_local = host in ("localhost", "127.0.0.1")
    if parsed.scheme != "https" and not is_local:
        logger.warning(f"RPC endpoint does not use https:// (got: {parsed.scheme}://)")
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
