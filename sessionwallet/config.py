"""
Global configuration for the session wallet.
Manages RPC endpoints, per-network transaction defaults and keystore settings.
"""
from typing import Dict, Optional
from dataclasses import dataclass, asdict
import json
import os


# default gas: 3.135M
DEFAULT_GAS = 3135000

# "nonce too low" resubmissions allowed per invoke
MAX_NONCE_RETRIES = 5

# keystore crypto parameters
KDF = "scrypt"
ROUNDS = 4096
KEYSIZE = 32
IVSIZE = 16
SCRYPT_R = 8
SCRYPT_P = 1
PBKDF2_PRF = "hmac-sha256"
CIPHER = "aes-128-ctr"
MIN_PASSWORD_LENGTH = 6

SUPPORTED_KDFS = ("scrypt", "pbkdf2")

# name -> (chain_id, rpc_url, label)
DEFAULT_NETWORKS = {
    "local": (1337, "http://127.0.0.1:8545", "Local Development Node"),
    "sepolia": (11155111, "https://rpc.sepolia.org", "Sepolia Testnet"),
    "mainnet": (1, "https://eth.llamarpc.com", "Ethereum Mainnet"),
}


@dataclass
class NetworkConfig:
    """Configuration for a single network."""
    chain_id: Optional[int]
    rpc_url: str
    faucet_url: Optional[str] = None
    default_gas: int = DEFAULT_GAS
    max_nonce_retries: int = MAX_NONCE_RETRIES
    name: Optional[str] = None

    def __post_init__(self):
        if not self.rpc_url:
            raise ValueError("RPC URL cannot be empty")
        if self.max_nonce_retries < 0:
            raise ValueError("max_nonce_retries cannot be negative")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'NetworkConfig':
        """Create from dictionary."""
        return cls(**data)


class Config:
    """
    Global configuration singleton for network and keystore settings.
    Automatically loads from and saves to config.json.

    Usage:
        config = Config()  # Auto-loads from config.json if exists
        config.add_network("local", NetworkConfig(...))
        rpc = config.get_rpc_url("local")
    """

    _instance = None
    DEFAULT_CONFIG_PATH = "config.json"

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._networks: Dict[str, NetworkConfig] = {}
        self.kdf = KDF
        self.rounds = ROUNDS
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._initialized = True

        if os.path.exists(self.config_path):
            self.load_from_json()

    def add_network(self, network_name: str, network_config: NetworkConfig, save: bool = True):
        """
        Add or update a network configuration.

        Args:
            network_name: Unique identifier for the network (e.g., "local", "sepolia")
            network_config: NetworkConfig object with network details
            save: Whether to save to config.json immediately (default: True)
        """
        self._networks[network_name] = network_config

        if save:
            self.save_to_json()

    def get_network(self, network_name: str) -> NetworkConfig:
        """
        Get network configuration by name.

        Raises:
            KeyError: If network not found
        """
        if network_name not in self._networks:
            raise KeyError(f"Network '{network_name}' not configured")
        return self._networks[network_name]

    def get_rpc_url(self, network_name: str) -> str:
        """Get RPC URL for a network."""
        return self.get_network(network_name).rpc_url

    def get_chain_id(self, network_name: str) -> Optional[int]:
        """Get chain ID for a network."""
        return self.get_network(network_name).chain_id

    def get_faucet_url(self, network_name: str) -> Optional[str]:
        """Get faucet endpoint for a network, if it has one."""
        return self.get_network(network_name).faucet_url

    def set_keystore_params(self, kdf: str, rounds: int, save: bool = True):
        """
        Set the KDF used for newly created keystores.

        Existing keystores are unaffected: they are always decrypted with the
        parameters recorded inside them.

        Args:
            kdf: "scrypt" or "pbkdf2"
            rounds: scrypt cost factor (n) or PBKDF2 iteration count (c)
            save: Whether to save to config.json immediately
        """
        if kdf not in SUPPORTED_KDFS:
            raise ValueError(f"Unsupported KDF: {kdf}")
        if rounds <= 1:
            raise ValueError(f"Invalid KDF rounds: {rounds}")

        self.kdf = kdf
        self.rounds = rounds

        if save:
            self.save_to_json()

    def has_network(self, network_name: str) -> bool:
        """Check if network is configured."""
        return network_name in self._networks

    def list_networks(self) -> list:
        """List all configured network names."""
        return list(self._networks.keys())

    # ============================================
    # JSON Persistence
    # ============================================

    def save_to_json(self, path: Optional[str] = None):
        """
        Save configuration to JSON file.

        Args:
            path: Custom path (uses self.config_path if not provided)
        """
        save_path = path or self.config_path

        config_data = {
            'keystore': {
                'kdf': self.kdf,
                'rounds': self.rounds,
            },
            'networks': {
                name: network.to_dict()
                for name, network in self._networks.items()
            }
        }

        with open(save_path, 'w') as f:
            json.dump(config_data, f, indent=2)

    def load_from_json(self, path: Optional[str] = None):
        """
        Load configuration from JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        load_path = path or self.config_path

        if not os.path.exists(load_path):
            raise FileNotFoundError(f"Config file not found: {load_path}")

        with open(load_path, 'r') as f:
            config_data = json.load(f)

        keystore = config_data.get('keystore', {})
        self.set_keystore_params(keystore.get('kdf', KDF), keystore.get('rounds', ROUNDS), save=False)

        self._networks.clear()
        for network_name, network_data in config_data.get('networks', {}).items():
            self._networks[network_name] = NetworkConfig.from_dict(network_data)

    def load_default_networks(self, save: bool = True):
        """Register the local dev node, Sepolia and mainnet, replacing same-named entries."""
        for network_name, (chain_id, rpc_url, label) in DEFAULT_NETWORKS.items():
            self._networks[network_name] = NetworkConfig(chain_id=chain_id, rpc_url=rpc_url, name=label)

        if save:
            self.save_to_json()

    def __repr__(self):
        return f"<Config networks={list(self._networks.keys())} kdf={self.kdf} path={self.config_path}>"
