"""
On-chain collaborator: balances, transaction building and broadcast via web3.

Balances are advisory and degrade to "0.0" when the RPC is unreachable.
Transaction building and broadcast never degrade; they raise
InsufficientFundsForGas or BroadcastFailed.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from web3 import Web3
from web3.exceptions import Web3Exception

from . import config
from .errors import BroadcastFailed, InsufficientFundsForGas, MalformedRequestPayload
from .keyring import KeyRing

logger = logging.getLogger(__name__)

_INSUFFICIENT_FUNDS_MARKERS = ("insufficient funds", "insufficient_funds")


def parse_quantity(value: Union[int, str, None], field_name: str = "value") -> int:
    """
    Parse a JSON-RPC quantity: int, 0x-hex string or decimal string.

    Raises:
        MalformedRequestPayload: If the value is not a non-negative integer
    """
    if value is None or value == "":
        return 0
    try:
        if isinstance(value, bool):
            raise ValueError("booleans are not quantities")
        if isinstance(value, int):
            number = value
        elif isinstance(value, str) and value.lower().startswith("0x"):
            number = int(value, 16) if len(value) > 2 else 0
        else:
            number = int(str(value), 10)
    except (TypeError, ValueError) as e:
        raise MalformedRequestPayload(f"Invalid {field_name}: {value!r}") from e
    if number < 0:
        raise MalformedRequestPayload(f"Invalid {field_name}: {value!r}")
    return number


def _is_insufficient_funds(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _INSUFFICIENT_FUNDS_MARKERS)


def _broadcast_error(error: Exception, what: str) -> Exception:
    if _is_insufficient_funds(error):
        return InsufficientFundsForGas(
            "Insufficient native currency to pay for gas. Top up the sender and retry."
        )
    return BroadcastFailed(f"{what} failed: {error}")


class ChainClient:
    """Talks to one EVM network over JSON-RPC."""

    def __init__(self, network: str = config.DEFAULT_NETWORK, web3: Optional[Web3] = None):
        """
        Initialize the client.

        Args:
            network: Key of config.NETWORKS
            web3: Pre-built Web3 instance (tests pass one with a fake provider)
        """
        if network not in config.NETWORKS:
            raise ValueError(f"Unknown network: {network}")
        self.network = network
        self.info = config.NETWORKS[network]
        self.w3 = web3 or Web3(Web3.HTTPProvider(self.info["rpc"]))

    @property
    def chain_id(self) -> int:
        return self.info["chain_id"]

    @property
    def currency(self) -> str:
        return self.info["currency"]

    def get_native_balance(self, address: str) -> str:
        """Native balance in ether units, "0.0" if the RPC fails."""
        try:
            wei = self.w3.eth.get_balance(Web3.to_checksum_address(address))
        except (ValueError, Web3Exception, OSError) as e:
            logger.warning(f"Balance lookup on {self.network} failed: {e}")
            return "0.0"
        return str(Web3.from_wei(wei, 'ether'))

    def token_contract(self, token_address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=config.ERC20_ABI)

    def get_token_balance(self, token: Dict[str, Any], address: str) -> str:
        """ERC-20 balance in token units, "0.0" if the RPC fails."""
        try:
            contract = self.token_contract(token["address"])
            raw = contract.functions.balanceOf(Web3.to_checksum_address(address)).call()
            decimals = token.get("decimals")
            if decimals is None:
                decimals = contract.functions.decimals().call()
        except (ValueError, Web3Exception, OSError) as e:
            logger.warning(f"Token balance lookup for {token.get('symbol')} failed: {e}")
            return "0.0"
        return str(Decimal(raw) / (Decimal(10) ** int(decimals)))

    def token_decimals(self, token_address: str) -> int:
        try:
            return int(self.token_contract(token_address).functions.decimals().call())
        except (ValueError, Web3Exception, OSError) as e:
            raise BroadcastFailed(f"Could not read token decimals: {e}") from e

    def build_transaction(self, sender: str, to: str, value: int = 0, data: str = "0x",
                          gas: Optional[int] = None, gas_buffer: int = 0) -> Dict[str, Any]:
        """
        Complete a transaction with nonce, gas price, gas limit and chain id.

        When gas is not given it is estimated and gas_buffer is added on top.
        """
        sender = Web3.to_checksum_address(sender)
        tx: Dict[str, Any] = {
            "from": sender,
            "to": Web3.to_checksum_address(to),
            "value": int(value),
            "data": data or "0x",
            "chainId": self.chain_id,
        }
        try:
            tx["nonce"] = self.w3.eth.get_transaction_count(sender)
            tx["gasPrice"] = self.w3.eth.gas_price
            if gas is None:
                gas = self.w3.eth.estimate_gas({k: tx[k] for k in ("from", "to", "value", "data")})
                gas += max(gas_buffer, 0)
        except (ValueError, Web3Exception, OSError) as e:
            raise _broadcast_error(e, "Preparing the transaction") from e
        tx["gas"] = int(gas)
        return tx

    def broadcast(self, keyring: KeyRing, transaction: Dict[str, Any]) -> str:
        """
        Sign with the sender's identity and submit.

        Returns:
            The transaction hash as 0x hex
        """
        unsigned = {k: v for k, v in transaction.items() if k != "from"}
        raw = keyring.sign_transaction(transaction["from"], unsigned)
        try:
            tx_hash = self.w3.eth.send_raw_transaction(raw)
        except (ValueError, Web3Exception, OSError) as e:
            raise _broadcast_error(e, "Broadcast") from e
        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"Transaction sent on {self.network}: {tx_hex}")
        return tx_hex
