"""
Remote pairing transport boundary.

A transport turns the relay protocol into plain events posted on its inbox
queue (SessionProposal, SessionRequest, SessionDeleted, PairingFailed) and
carries the wallet's answers back out (approve, reject, respond, disconnect).
The SessionAuthorizer is the single consumer of the inbox.
"""

import itertools
import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import PeerRejectedOrTimedOut

logger = logging.getLogger(__name__)


@dataclass
class SessionProposal:
    """A peer asks to open a session."""
    id: int
    peer_name: str
    required_namespaces: Dict[str, Any] = field(default_factory=dict)
    optional_namespaces: Dict[str, Any] = field(default_factory=dict)
    peer_metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionRequest:
    """A peer asks the wallet to sign or send something."""
    id: int
    topic: str
    method: str
    params: Any
    chain_id: Optional[str] = None


@dataclass
class SessionDeleted:
    """The peer closed the session."""
    topic: str
    reason: str = ""


@dataclass
class PairingFailed:
    """The relay reported that pairing or the session broke."""
    reason: str


@dataclass
class Approval:
    """Result of approving a proposal: the session topic and an ack waiter."""
    topic: str
    acknowledged: Callable[[float], None]


class Transport(ABC):
    """Relay protocol seen from the wallet."""

    def __init__(self):
        self.inbox: "queue.Queue[Any]" = queue.Queue()

    def emit(self, event: Any) -> None:
        """Post an inbound event for the authorizer."""
        self.inbox.put(event)

    @abstractmethod
    def pair(self, uri: str) -> None:
        """
        Start pairing with the peer behind a URI.

        Raises:
            PeerRejectedOrTimedOut: If the relay cannot be reached
        """

    @abstractmethod
    def approve(self, proposal_id: int, namespaces: Dict[str, Any]) -> Approval:
        """Accept a proposal with the negotiated namespaces."""

    @abstractmethod
    def reject(self, proposal_id: int, code: int, message: str) -> None:
        """Decline a proposal."""

    @abstractmethod
    def respond(self, topic: str, response: Dict[str, Any]) -> None:
        """Send a JSON-RPC response on a session."""

    @abstractmethod
    def disconnect(self, topic: str, code: int, message: str) -> None:
        """Close a session from the wallet side."""


class LoopbackTransport(Transport):
    """
    In-process transport with the peer played by the caller.

    Outbound traffic is recorded in lists; peer_* methods inject inbound
    events. Used for integration harnesses and tests.
    """

    def __init__(self, auto_acknowledge: bool = True, reachable: bool = True):
        super().__init__()
        self.auto_acknowledge = auto_acknowledge
        self.reachable = reachable
        self.paired_uris: List[str] = []
        self.approvals: List[Tuple[int, Dict[str, Any]]] = []
        self.rejections: List[Tuple[int, int, str]] = []
        self.responses: List[Tuple[str, Dict[str, Any]]] = []
        self.disconnects: List[Tuple[str, int, str]] = []
        self._acked = threading.Event()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def pair(self, uri: str) -> None:
        if not self.reachable:
            raise PeerRejectedOrTimedOut("Relay unreachable")
        self.paired_uris.append(uri)

    def approve(self, proposal_id: int, namespaces: Dict[str, Any]) -> Approval:
        with self._lock:
            self.approvals.append((proposal_id, namespaces))
            topic = f"topic-{proposal_id}"
        if self.auto_acknowledge:
            self._acked.set()

        def acknowledged(timeout: float) -> None:
            if not self._acked.wait(timeout):
                raise PeerRejectedOrTimedOut("Peer did not acknowledge the session")

        return Approval(topic=topic, acknowledged=acknowledged)

    def reject(self, proposal_id: int, code: int, message: str) -> None:
        self.rejections.append((proposal_id, code, message))

    def respond(self, topic: str, response: Dict[str, Any]) -> None:
        self.responses.append((topic, response))

    def disconnect(self, topic: str, code: int, message: str) -> None:
        self.disconnects.append((topic, code, message))

    def peer_acknowledge(self) -> None:
        self._acked.set()

    def peer_propose(self, peer_name: str, required: Optional[Dict[str, Any]] = None,
                     optional: Optional[Dict[str, Any]] = None) -> int:
        proposal_id = next(self._ids)
        self.emit(SessionProposal(id=proposal_id, peer_name=peer_name,
                                  required_namespaces=required or {},
                                  optional_namespaces=optional or {}))
        return proposal_id

    def peer_request(self, topic: str, method: str, params: Any,
                     chain_id: Optional[str] = None, request_id: Optional[int] = None) -> int:
        request_id = request_id if request_id is not None else next(self._ids)
        self.emit(SessionRequest(id=request_id, topic=topic, method=method,
                                 params=params, chain_id=chain_id))
        return request_id

    def peer_disconnect(self, topic: str, reason: str = "") -> None:
        self.emit(SessionDeleted(topic=topic, reason=reason))

    def responses_for(self, request_id: int) -> List[Dict[str, Any]]:
        return [r for _, r in self.responses if r.get("id") == request_id]
