"""
Configuration constants for the WalletVault application.
"""

import os

# Application Metadata
APP_VERSION = "1.0"  # Use: Current version of the application. Type: str. Range: Semantic versioning string (e.g., "1.0.0")
APP_NAME = "WalletVault"  # Use: Full name of the application. Type: str. Range: Any valid string.
APP_TITLE_PREFIX = f"{APP_NAME} v{APP_VERSION}"  # Use: Prefix for dialog titles, combining name and version. Type: str (f-string). Range: Derived from APP_NAME and APP_VERSION.

# Security Settings
SALT_SIZE = 32  # Use: Size of the cryptographic salt in bytes for key derivation. Type: int. Range: At least 16 bytes (128 bits).
KEY_SIZE = 32  # Use: Size of the encryption key in bytes. Corresponds to AES-256. Type: int. Range: 16, 24 or 32 bytes.
NONCE_SIZE = 12  # Use: Size of the AES-GCM nonce in bytes. Type: int. Range: 12 bytes (96 bits) is the recommended size for GCM.
ARGON2_TIME_COST = 2  # Use: Argon2id time cost parameter. Type: int. Range: Typically 1 to 10.
ARGON2_MEMORY_COST = 65536  # Use: Argon2id memory cost in KiB. Type: int. Range: At least 65536 (64 MB) for production vaults.
ARGON2_PARALLELISM = 4  # Use: Argon2id parallelism (lanes). Type: int. Range: Typically 1 to 8.
PBKDF2_ITERATIONS = 310000  # Use: PBKDF2-HMAC-SHA256 iterations, used when argon2-cffi is unavailable. Type: int. Range: At least 100,000.
RECORD_BLOB_VERSION = 1  # Use: Format version written into every encrypted record blob. Type: int. Range: Positive integer.
MAX_UNLOCK_ATTEMPTS = 3  # Use: Number of wrong vault passwords tolerated before unlocking becomes fatal. Type: int. Range: Positive integer (e.g., 3-10).
PLAINTEXT_CONFIRMATION_STEPS = 2  # Use: Number of sequential affirmative answers required before secrets are stored unencrypted. Type: int. Range: 2.
PLAINTEXT_RISK_PROMPTS = [  # Use: Messages shown for each plaintext-mode confirmation step. Type: list[str]. Range: One entry per confirmation step.
    "Your private keys will be stored in PLAIN TEXT. Anyone with access to this device can steal your funds. Are you absolutely sure?",
    "LAST CHANCE: store the vault unencrypted?",
]

# File and Directory Names
CONFIG_DIR_NAME = ".walletvault"  # Use: Hidden directory in the user's home holding all vault files. Type: str. Range: Any valid directory name.
HOME_ENV_VAR = "WALLETVAULT_HOME"  # Use: Environment variable overriding the vault directory. Type: str. Range: Any environment variable name.
TRANSPORT_ENV_VAR = "WALLETVAULT_TRANSPORT"  # Use: Environment variable naming the session transport factory as "module:callable". Type: str. Range: Any environment variable name.
WALLETS_FILE = "wallets.json"  # Use: Filename of the active record list. Type: str. Range: Any valid filename.
TRASH_FILE = "trash_wallets.json"  # Use: Filename of the deleted record list. Type: str. Range: Any valid filename.
SETTINGS_FILE = "settings.json"  # Use: Filename of the user preferences. Type: str. Range: Any valid filename.
AUDIT_LOG_DIR = "logs"  # Use: Subdirectory of the vault directory holding the audit log. Type: str. Range: Any valid directory name.
AUDIT_LOG_FILE = "audit.log"  # Use: Filename for the security audit log. Type: str. Range: Any valid filename.


def get_config_dir() -> str:
    """Return the vault directory, honouring the WALLETVAULT_HOME override."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return override
    return os.path.join(os.path.expanduser("~"), CONFIG_DIR_NAME)


# Identity Settings
DEFAULT_CREATED_NAME = "Wallet {n}"  # Use: Default display name for generated identities. Type: str (format string). Range: Must contain "{n}".
DEFAULT_IMPORTED_NAME = "Imported {n}"  # Use: Default display name for imported identities. Type: str (format string). Range: Must contain "{n}".
MNEMONIC_ACCOUNT_PATH = "m/44'/60'/0'/0/0"  # Use: BIP-44 derivation path used when importing a mnemonic phrase. Type: str. Range: Valid BIP-32 path.

# Network Settings
NETWORKS = {  # Use: Supported EVM networks keyed by short name. Type: dict[str, dict]. Range: Each entry needs name, rpc, chain_id, currency, coingecko_id.
    "ethereum": {"name": "Ethereum Mainnet", "rpc": "https://eth.llamarpc.com", "chain_id": 1, "currency": "ETH", "coingecko_id": "ethereum"},
    "bsc": {"name": "Binance Smart Chain", "rpc": "https://bsc-dataseed.binance.org", "chain_id": 56, "currency": "BNB", "coingecko_id": "binancecoin"},
    "polygon": {"name": "Polygon (Matic)", "rpc": "https://polygon-rpc.com", "chain_id": 137, "currency": "POL", "coingecko_id": "matic-network"},
    "celo": {"name": "Celo Mainnet", "rpc": "https://forno.celo.org", "chain_id": 42220, "currency": "CELO", "coingecko_id": "celo"},
}
DEFAULT_NETWORK = "ethereum"  # Use: Network used when the user has not picked one. Type: str. Range: A key of NETWORKS.

PREDEFINED_TOKENS = {  # Use: Well-known ERC-20 tokens per network. Type: dict[str, list[dict]]. Range: Keys of NETWORKS.
    "ethereum": [
        {"symbol": "USDT", "address": "0xdac17f958d2ee523a2206206994597c13d831ec7", "decimals": 6, "coingecko_id": "tether"},
    ],
    "bsc": [
        {"symbol": "JMPT", "address": "0x88d7e9b65dc24cf54f5edef929225fc3e1580c25", "decimals": 18, "coingecko_id": "jumptoken"},
        {"symbol": "USDT", "address": "0x55d398326f99059fF775485246999027B3197955", "decimals": 18, "coingecko_id": "tether"},
    ],
    "polygon": [
        {"symbol": "JMPT", "address": "0x88d7e9b65dc24cf54f5edef929225fc3e1580c25", "decimals": 18, "coingecko_id": "jumptoken"},
        {"symbol": "USDT", "address": "0xc2132D05D31c914a87C6611C10748AEb04B58e8F", "decimals": 6, "coingecko_id": "tether"},
    ],
    "celo": [
        {"symbol": "JMPT", "address": "0x88d7e9b65dc24cf54f5edef929225fc3e1580c25", "decimals": 18, "coingecko_id": "jumptoken"},
    ],
}

ERC20_ABI = [  # Use: Minimal ERC-20 ABI for balance lookups and transfers. Type: list[dict]. Range: Valid Solidity JSON ABI entries.
    {"name": "balanceOf", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "owner", "type": "address"}], "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "decimals", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "uint8"}]},
    {"name": "symbol", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "string"}]},
    {"name": "transfer", "type": "function", "stateMutability": "nonpayable",
     "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
     "outputs": [{"name": "", "type": "bool"}]},
]

# User Preferences
SUPPORTED_CURRENCIES = ["USD", "INR", "EUR", "GBP", "JPY"]  # Use: Display currencies the user may choose. Type: list[str]. Range: ISO 4217 codes.
DEFAULT_SETTINGS = {  # Use: Values for settings.json keys missing on disk. Type: dict[str, Any]. Range: See Settings dataclass.
    "currency": "USD",
    "default_network": DEFAULT_NETWORK,
    "gas_limit_buffer": "0",
    "backup_method": None,
    "rclone_remote": None,
    "encryption_disabled": False,
    "saved_tokens": [],
}
BACKUP_METHODS = ("rclone", "gapi")  # Use: Backup methods understood by the external backup collaborator. Type: tuple[str]. Range: Any strings.

# Remote Session (WalletConnect) Settings
PAIRING_URI_SCHEME = "wc:"  # Use: Required prefix of a pairing URI. Type: str. Range: "wc:".
DEFAULT_CHAIN = "eip155:1"  # Use: Chain granted when a proposed namespace names no chains. Type: str. Range: CAIP-2 chain id.
SESSION_ACK_TIMEOUT_SECONDS = 30  # Use: Upper bound on waiting for the peer to acknowledge an approved session. Type: int. Range: Positive integer.
WALLET_METADATA = {  # Use: Metadata announced to peers when pairing. Type: dict[str, Any]. Range: WalletConnect metadata shape.
    "name": "WalletVault",
    "description": "Local multi-wallet vault",
    "url": "https://walletvault.local",
    "icons": [],
}
METHOD_PERSONAL_SIGN = "personal_sign"  # Use: Peer method for plain message signatures. Type: str. Range: JSON-RPC method name.
METHODS_TYPED_DATA = ("eth_signTypedData", "eth_signTypedData_v3", "eth_signTypedData_v4")  # Use: Peer methods for EIP-712 signatures. Type: tuple[str]. Range: JSON-RPC method names.
METHOD_SEND_TRANSACTION = "eth_sendTransaction"  # Use: Peer method for transaction broadcast. Type: str. Range: JSON-RPC method name.

# Peer-facing error codes
ERROR_USER_REJECTED = 5000  # Use: Code sent when the user declines a request. Type: int. Range: WalletConnect SDK error code.
ERROR_UNSUPPORTED_METHOD = 5101  # Use: Code sent for a method the wallet does not implement. Type: int. Range: WalletConnect SDK error code.
ERROR_INVALID_PARAMS = -32602  # Use: Code sent for a malformed request payload. Type: int. Range: JSON-RPC error code.
ERROR_INSUFFICIENT_FUNDS = -32000  # Use: Code sent when the account cannot pay for gas. Type: int. Range: JSON-RPC server error code.
ERROR_INTERNAL = -32603  # Use: Code sent for any other execution failure. Type: int. Range: JSON-RPC error code.
ERROR_USER_DISCONNECTED = 6000  # Use: Code sent when the wallet closes a session. Type: int. Range: WalletConnect SDK error code.
