"""
Local fund-moving flows: native coin and ERC-20 transfers.

Each call asks the Action Gate right before the transaction is signed.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from web3 import Web3

from .chain import ChainClient
from .gate import ActionGate, ActionKind
from .session import VaultSession

logger = logging.getLogger(__name__)


def _parse_amount(amount: str) -> Decimal:
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Amount must be positive: {amount!r}")
    return value


def _check_recipient(to: str) -> str:
    if not Web3.is_address(to):
        raise ValueError(f"Invalid recipient address: {to!r}")
    return Web3.to_checksum_address(to)


def transfer_native(session: VaultSession, gate: ActionGate, chain: ChainClient,
                    sender: str, to: str, amount: str) -> str:
    """
    Send native coin from an unlocked identity.

    Returns:
        The transaction hash
    """
    identity = session.keyring.get(sender)
    to = _check_recipient(to)
    value = _parse_amount(amount)
    tx = chain.build_transaction(
        identity.address, to, value=Web3.to_wei(value, 'ether'),
        gas_buffer=session.settings.gas_buffer(),
    )
    gate.require(
        ActionKind.MOVE_FUNDS,
        f"Send {value} {chain.currency} from {identity.name} to {to} on {chain.info['name']}?",
        details=f"gas limit {tx['gas']}",
    )
    tx_hash = chain.broadcast(session.keyring, tx)
    session.audit.record("transfer:native", f"{identity.address} -> {to} {value} {chain.currency} {tx_hash}")
    return tx_hash


def transfer_token(session: VaultSession, gate: ActionGate, chain: ChainClient,
                   sender: str, token_address: str, to: str, amount: str,
                   decimals: Optional[int] = None, symbol: str = "tokens") -> str:
    """
    Send an ERC-20 token from an unlocked identity.

    Returns:
        The transaction hash
    """
    identity = session.keyring.get(sender)
    to = _check_recipient(to)
    token_address = _check_recipient(token_address)
    value = _parse_amount(amount)
    if decimals is None:
        decimals = chain.token_decimals(token_address)
    units = int(value * (Decimal(10) ** int(decimals)))
    if units <= 0:
        raise ValueError(f"Amount is below the token's precision: {amount!r}")

    contract = chain.token_contract(token_address)
    data = contract.encode_abi("transfer", args=[to, units])
    tx = chain.build_transaction(identity.address, token_address, value=0, data=data,
                                 gas_buffer=session.settings.gas_buffer())
    gate.require(
        ActionKind.MOVE_FUNDS,
        f"Send {value} {symbol} from {identity.name} to {to} on {chain.info['name']}?",
        details=f"token {token_address}, gas limit {tx['gas']}",
    )
    tx_hash = chain.broadcast(session.keyring, tx)
    session.audit.record("transfer:token", f"{identity.address} -> {to} {value} {symbol} {tx_hash}")
    return tx_hash
