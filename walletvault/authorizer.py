"""
Session Authorizer: the wallet side of a remote pairing session.

One loop consumes the transport inbox and moves through

    IDLE -> PAIRING -> AWAITING_APPROVAL -> NEGOTIATING -> ACTIVE
    ACTIVE -> REQUEST_PENDING -> EXECUTING -> ACTIVE

Every proposal and every request passes the Action Gate before anything is
granted, signed or sent. Local cancellation is posted to the same inbox so the
loop stays the only writer of session state.
"""

import json
import logging
import queue
import string
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union
from urllib.parse import parse_qs

from web3 import Web3

from . import config
from .chain import ChainClient, parse_quantity
from .errors import (
    BroadcastFailed, InsufficientFundsForGas, InvalidPairingUri,
    MalformedRequestPayload, PeerRejectedOrTimedOut, SessionStateError,
    UnsupportedMethod, UserRejectedAction, VaultError,
)
from .gate import ActionGate, ActionKind
from .session import VaultSession
from .transport import (
    PairingFailed, SessionDeleted, SessionProposal, SessionRequest, Transport,
)

logger = logging.getLogger(__name__)

ChainFactory = Callable[[int], ChainClient]


class SessionState(str, Enum):
    IDLE = "idle"
    PAIRING = "pairing"
    AWAITING_APPROVAL = "awaiting_approval"
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    REQUEST_PENDING = "request_pending"
    EXECUTING = "executing"


class LocalCancel:
    """Inbox event: the device owner asked to end the session."""


@dataclass
class PairedSession:
    """An acknowledged session bound to one identity."""
    topic: str
    peer_name: str
    address: str
    namespaces: Dict[str, Any] = field(default_factory=dict)

    def chains(self) -> List[str]:
        result = []
        for namespace in self.namespaces.values():
            for account in namespace.get("accounts", []):
                chain = account.rsplit(":", 1)[0]
                if chain not in result:
                    result.append(chain)
        return result


def parse_pairing_uri(uri: str) -> Dict[str, str]:
    """
    Split a pairing URI of the form wc:<topic>@<version>?<params>.

    Raises:
        InvalidPairingUri: If the scheme, topic or version is missing
    """
    if not isinstance(uri, str) or not uri.startswith(config.PAIRING_URI_SCHEME):
        raise InvalidPairingUri("Pairing URI must start with 'wc:'")
    body = uri[len(config.PAIRING_URI_SCHEME):]
    topic, _, rest = body.partition("@")
    version, _, query = rest.partition("?")
    if not topic or not version.isdigit():
        raise InvalidPairingUri("Pairing URI needs a topic and a version")
    params = {k: v[0] for k, v in parse_qs(query).items()}
    if version == "2" and not params.get("symKey"):
        raise InvalidPairingUri("Pairing URI is missing its symKey")
    params["topic"] = topic
    params["version"] = version
    return params


def _union(target: List[str], values: Any, what: str) -> None:
    if values is None:
        return
    if not isinstance(values, (list, tuple)):
        raise MalformedRequestPayload(f"Proposal {what} must be a list")
    for value in values:
        if value not in target:
            target.append(value)


def build_namespaces(required: Optional[Dict[str, Any]], optional: Optional[Dict[str, Any]],
                     address: str) -> Dict[str, Dict[str, List[str]]]:
    """
    Answer a proposal's namespaces for one bound address.

    Chains, methods and events are the union of what the peer required and
    what it listed as optional. A namespace without chains gets its own key
    when that key is already a chain id, otherwise eip155:1.
    """
    merged: Dict[str, Dict[str, List[str]]] = {}
    for source in (required or {}, optional or {}):
        if not isinstance(source, dict):
            raise MalformedRequestPayload("Proposal namespaces must be an object")
        for key, requested in source.items():
            if not isinstance(requested, dict):
                raise MalformedRequestPayload(f"Namespace '{key}' must be an object")
            entry = merged.setdefault(key, {"chains": [], "methods": [], "events": []})
            _union(entry["chains"], requested.get("chains"), "chains")
            _union(entry["methods"], requested.get("methods"), "methods")
            _union(entry["events"], requested.get("events"), "events")

    namespaces = {}
    for key, entry in merged.items():
        chains = entry["chains"] or ([key] if ":" in key else [config.DEFAULT_CHAIN])
        namespaces[key] = {
            "accounts": [f"{chain}:{address}" for chain in chains],
            "methods": entry["methods"],
            "events": entry["events"],
        }
    return namespaces


def default_chain_factory(chain_id: int) -> ChainClient:
    for key, info in config.NETWORKS.items():
        if info["chain_id"] == chain_id:
            return ChainClient(key)
    raise MalformedRequestPayload(f"Unsupported chain id {chain_id}")


def _is_hex_data(value: Any) -> bool:
    if not isinstance(value, str) or not value.startswith("0x") or len(value) % 2:
        return False
    return all(c in string.hexdigits for c in value[2:])


def _decode_personal_message(value: Any) -> Tuple[Union[bytes, str], str]:
    """Return (payload to sign, text to show)."""
    if not isinstance(value, str):
        raise MalformedRequestPayload("personal_sign message must be a string")
    if value.startswith("0x") and len(value) % 2 == 0:
        try:
            raw = bytes.fromhex(value[2:])
        except ValueError:
            return value, value
        try:
            return raw, raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw, value
    return value, value


def _parse_typed_data(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise MalformedRequestPayload(f"Typed data is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise MalformedRequestPayload("Typed data must be an object")
    for key in ("domain", "types", "message"):
        if not isinstance(value.get(key), dict):
            raise MalformedRequestPayload(f"Typed data is missing '{key}'")
    return value


class SessionAuthorizer:
    """Drives one remote session at a time for one bound identity."""

    def __init__(self, vault: VaultSession, gate: ActionGate, transport: Transport,
                 chain_factory: ChainFactory = default_chain_factory,
                 ack_timeout: float = config.SESSION_ACK_TIMEOUT_SECONDS):
        self.vault = vault
        self.gate = gate
        self.transport = transport
        self.chain_factory = chain_factory
        self.ack_timeout = ack_timeout
        self.state = SessionState.IDLE
        self.session: Optional[PairedSession] = None
        self._address: Optional[str] = None
        self._seen: Set[Tuple[str, int]] = set()
        self._responded: Set[Tuple[str, int]] = set()
        self._pending: Dict[Tuple[str, int], SessionRequest] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------

    def pair(self, uri: str, address: str) -> None:
        """
        Start pairing a peer with the identity at address.

        Raises:
            InvalidPairingUri: If the URI is malformed
            PeerRejectedOrTimedOut: If the relay cannot be reached
            SessionStateError: If a session is already in progress
        """
        with self._lock:
            if self.state != SessionState.IDLE:
                raise SessionStateError(f"Cannot pair while {self.state.value}")
            parse_pairing_uri(uri)
            identity = self.vault.keyring.get(address)
            try:
                self.transport.pair(uri)
            except OSError as e:
                raise PeerRejectedOrTimedOut(f"Relay unreachable: {e}") from e
            self._address = identity.address
            self.state = SessionState.PAIRING
            logger.info(f"Pairing started for {identity.name}")

    def handle_proposal(self, proposal: SessionProposal) -> None:
        """Ask the owner whether the peer may use the bound identity."""
        with self._lock:
            if self.state == SessionState.IDLE:
                logger.warning(f"Dropping proposal {proposal.id}: no pairing in progress")
                return
            if self.state != SessionState.PAIRING:
                self.transport.reject(proposal.id, config.ERROR_USER_REJECTED, "Another session is active")
                return
            self.state = SessionState.AWAITING_APPROVAL

        try:
            identity = self.vault.keyring.get(self._address)
            namespaces = build_namespaces(proposal.required_namespaces,
                                          proposal.optional_namespaces, identity.address)
        except VaultError as e:
            logger.warning(f"Rejecting proposal from {proposal.peer_name}: {e}")
            self.transport.reject(proposal.id, config.ERROR_INVALID_PARAMS, str(e))
            self.teardown()
            return

        chains = sorted({a.rsplit(":", 1)[0] for ns in namespaces.values() for a in ns["accounts"]})
        methods = sorted({m for ns in namespaces.values() for m in ns["methods"]})
        try:
            self.gate.require(
                ActionKind.GRANT_CAPABILITY,
                f"Do you want to connect {identity.name} ({identity.address}) to {proposal.peer_name}?",
                details=f"Chains: {', '.join(chains)}\nMethods: {', '.join(methods) or 'none'}",
            )
        except UserRejectedAction:
            self.transport.reject(proposal.id, config.ERROR_USER_REJECTED, "User rejected the session")
            self.teardown()
            return

        self.state = SessionState.NEGOTIATING
        try:
            approval = self.transport.approve(proposal.id, namespaces)
            approval.acknowledged(self.ack_timeout)
        except (PeerRejectedOrTimedOut, OSError) as e:
            logger.warning(f"Session with {proposal.peer_name} was not established: {e}")
            self.teardown()
            return

        with self._lock:
            self.session = PairedSession(topic=approval.topic, peer_name=proposal.peer_name,
                                         address=identity.address, namespaces=namespaces)
            self.state = SessionState.ACTIVE
        logger.info(f"Session active with {proposal.peer_name} on {', '.join(chains)}")
        self.vault.audit.record("session:active", f"{proposal.peer_name} {identity.address}")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def handle_request(self, request: SessionRequest) -> None:
        """Execute one peer request after a fresh confirmation and answer it once."""
        key = (request.topic, request.id)
        with self._lock:
            if self.state != SessionState.ACTIVE or self.session is None \
                    or request.topic != self.session.topic:
                logger.warning(f"Dropping request {request.id}: unknown or stale topic")
                return
            if key in self._seen:
                logger.warning(f"Dropping duplicate request {request.id}")
                return
            self._seen.add(key)
            self._pending[key] = request
            self.state = SessionState.REQUEST_PENDING

        try:
            result = self._execute(request)
        except UserRejectedAction:
            self._respond_error(request, config.ERROR_USER_REJECTED, "User rejected the request")
        except UnsupportedMethod as e:
            self._respond_error(request, config.ERROR_UNSUPPORTED_METHOD, str(e))
        except MalformedRequestPayload as e:
            self._respond_error(request, config.ERROR_INVALID_PARAMS, str(e))
        except InsufficientFundsForGas as e:
            self._respond_error(request, config.ERROR_INSUFFICIENT_FUNDS, str(e))
        except (BroadcastFailed, VaultError) as e:
            logger.error(f"Request {request.id} ({request.method}) failed: {e}")
            self._respond_error(request, config.ERROR_INTERNAL, str(e))
        except Exception as e:
            logger.error(f"Request {request.id} ({request.method}) raised unexpectedly: {e}", exc_info=True)
            self._respond_error(request, config.ERROR_INTERNAL, str(e))
        else:
            self._respond_result(request, result)
        finally:
            with self._lock:
                self._pending.pop(key, None)
                if self.state in (SessionState.REQUEST_PENDING, SessionState.EXECUTING):
                    self.state = SessionState.ACTIVE

    def _execute(self, request: SessionRequest) -> Any:
        if request.method == config.METHOD_PERSONAL_SIGN:
            return self._personal_sign(request)
        if request.method in config.METHODS_TYPED_DATA:
            return self._sign_typed_data(request)
        if request.method == config.METHOD_SEND_TRANSACTION:
            return self._send_transaction(request)
        raise UnsupportedMethod(f"Method {request.method} is not supported")

    def _params(self, request: SessionRequest) -> list:
        if not isinstance(request.params, (list, tuple)) or not request.params:
            raise MalformedRequestPayload(f"{request.method} expects a non-empty params list")
        return list(request.params)

    def _check_account(self, address: Any) -> None:
        if address is None:
            return
        if not isinstance(address, str) or address.lower() != self.session.address.lower():
            raise MalformedRequestPayload(f"Account {address} is not part of this session")

    def _personal_sign(self, request: SessionRequest) -> str:
        params = self._params(request)
        message, address = params[0], params[1] if len(params) > 1 else None
        # Some peers send [address, message]
        if isinstance(message, str) and isinstance(address, str) \
                and message.lower() == self.session.address.lower() and not Web3.is_address(address):
            message, address = address, message
        self._check_account(address)
        payload, text = _decode_personal_message(message)

        identity = self.vault.keyring.get(self.session.address)
        self.gate.require(
            ActionKind.SIGN_MESSAGE,
            f"{self.session.peer_name} asks {identity.name} to sign a message:",
            details=text,
        )
        self.state = SessionState.EXECUTING
        return self.vault.keyring.sign_message(identity.address, payload)

    def _sign_typed_data(self, request: SessionRequest) -> str:
        params = self._params(request)
        if len(params) < 2:
            raise MalformedRequestPayload(f"{request.method} expects [address, typedData]")
        self._check_account(params[0])
        typed = _parse_typed_data(params[1])

        identity = self.vault.keyring.get(self.session.address)
        domain_name = typed["domain"].get("name", "unknown")
        self.gate.require(
            ActionKind.SIGN_MESSAGE,
            f"{self.session.peer_name} asks {identity.name} to sign typed data for {domain_name}:",
            details=json.dumps(typed["message"], indent=2, default=str),
        )
        self.state = SessionState.EXECUTING
        return self.vault.keyring.sign_typed_data(identity.address, typed["domain"],
                                                  typed["types"], typed["message"])

    def _request_chain(self, request: SessionRequest) -> int:
        chains = self.session.chains()
        chain = request.chain_id or (chains[0] if chains else config.DEFAULT_CHAIN)
        if chain not in chains:
            raise MalformedRequestPayload(f"Chain {chain} is not part of this session")
        namespace, _, reference = chain.partition(":")
        if namespace != "eip155" or not reference.isdigit():
            raise MalformedRequestPayload(f"Unsupported chain {chain}")
        return int(reference)

    def _send_transaction(self, request: SessionRequest) -> str:
        tx = self._params(request)[0]
        if not isinstance(tx, dict):
            raise MalformedRequestPayload("eth_sendTransaction expects a transaction object")
        self._check_account(tx.get("from"))
        to = tx.get("to")
        if not isinstance(to, str) or not Web3.is_address(to):
            raise MalformedRequestPayload(f"Invalid recipient: {to!r}")
        value = parse_quantity(tx.get("value"), "value")
        data = tx.get("data") or tx.get("input") or "0x"
        if not _is_hex_data(data):
            raise MalformedRequestPayload(f"Invalid data: {data!r}")
        gas = tx.get("gas", tx.get("gasLimit"))
        gas = parse_quantity(gas, "gas") if gas not in (None, "") else None

        chain = self.chain_factory(self._request_chain(request))
        identity = self.vault.keyring.get(self.session.address)
        to = Web3.to_checksum_address(to)
        self.gate.require(
            ActionKind.MOVE_FUNDS,
            f"{self.session.peer_name} asks {identity.name} to send "
            f"{Web3.from_wei(value, 'ether')} {chain.currency} to {to} on {chain.info['name']}.",
            details=f"Data: {data if len(data) <= 66 else data[:66] + '...'}",
        )
        self.state = SessionState.EXECUTING
        built = chain.build_transaction(identity.address, to, value=value, data=data, gas=gas,
                                        gas_buffer=self.vault.settings.gas_buffer())
        tx_hash = chain.broadcast(self.vault.keyring, built)
        self.vault.audit.record("session:send_transaction", f"{identity.address} -> {to} {tx_hash}")
        return tx_hash

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def _respond(self, request: SessionRequest, body: Dict[str, Any]) -> bool:
        key = (request.topic, request.id)
        with self._lock:
            if key in self._responded:
                logger.warning(f"Request {request.id} was already answered")
                return False
            if key not in self._pending or self.session is None \
                    or self.session.topic != request.topic:
                logger.info(f"Request {request.id} released without response")
                return False
            self._responded.add(key)
        response = {"id": request.id, "jsonrpc": "2.0"}
        response.update(body)
        self.transport.respond(request.topic, response)
        return True

    def _respond_result(self, request: SessionRequest, result: Any) -> bool:
        return self._respond(request, {"result": result})

    def _respond_error(self, request: SessionRequest, code: int, message: str) -> bool:
        logger.info(f"Request {request.id} ({request.method}) answered with error {code}")
        return self._respond(request, {"error": {"code": code, "message": message}})

    # ------------------------------------------------------------------
    # Teardown and loop
    # ------------------------------------------------------------------

    def teardown(self, reason: str = "") -> None:
        """Return to IDLE, releasing pending requests without a response."""
        with self._lock:
            if self._pending:
                logger.info(f"Releasing {len(self._pending)} pending request(s)")
            self._pending.clear()
            self._seen.clear()
            self._responded.clear()
            previous = self.session
            self.session = None
            self._address = None
            self.state = SessionState.IDLE
        if previous is not None:
            logger.info(f"Session with {previous.peer_name} ended {reason}".rstrip())
            self.vault.audit.record("session:ended", f"{previous.peer_name} {reason}".rstrip())

    def cancel_session(self) -> None:
        """Ask the loop to end the session. Safe to call from any thread."""
        self.transport.emit(LocalCancel())

    def _on_cancel(self) -> None:
        session = self.session
        if session is not None:
            try:
                self.transport.disconnect(session.topic, config.ERROR_USER_DISCONNECTED,
                                          "User disconnected")
            except OSError as e:
                logger.warning(f"Disconnect notice failed: {e}")
        self.teardown("by user")

    def dispatch(self, event: Any) -> None:
        if isinstance(event, SessionProposal):
            self.handle_proposal(event)
        elif isinstance(event, SessionRequest):
            self.handle_request(event)
        elif isinstance(event, SessionDeleted):
            if self.session is not None and event.topic == self.session.topic:
                self.teardown("by peer")
            else:
                logger.debug(f"Ignoring deletion of unknown topic {event.topic}")
        elif isinstance(event, PairingFailed):
            logger.warning(f"Pairing failed: {event.reason}")
            self.teardown("after pairing error")
        elif isinstance(event, LocalCancel):
            self._on_cancel()
        else:
            logger.warning(f"Ignoring unknown event {event!r}")

    def process_pending(self) -> int:
        """Handle every event already queued, without waiting. Returns the count."""
        count = 0
        while True:
            try:
                event = self.transport.inbox.get_nowait()
            except queue.Empty:
                return count
            self.dispatch(event)
            count += 1

    def run(self, poll_interval: Optional[float] = None,
            on_idle: Optional[Callable[[], None]] = None) -> None:
        """
        Consume events until the session returns to IDLE.

        Args:
            poll_interval: Seconds to wait for an event before calling on_idle
            on_idle: Called whenever the inbox stays empty for poll_interval
                (the desktop entry point pumps Qt events here)
        """
        while self.state != SessionState.IDLE:
            try:
                event = self.transport.inbox.get(timeout=poll_interval)
            except queue.Empty:
                if on_idle is not None:
                    on_idle()
                continue
            self.dispatch(event)
