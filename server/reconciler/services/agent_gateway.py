"""Interface to the agents running on deployed VMs."""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, Protocol, Union

from ..core.errors import AgentTransportError
from ..core.models import VMRecord

logger = logging.getLogger(__name__)


class AgentGateway(Protocol):
    """Blocking client returning the live state reported by a VM's agent.

    Implementations own per-call timeouts and raise ``AgentTransportError``
    when the agent cannot be reached.
    """

    def fetch_state(self, vm: VMRecord) -> Any: ...


class RecordedAgentGateway:
    """Agent gateway answering from recorded states keyed by agent id."""

    def __init__(self, states: Optional[Dict[str, Union[Any, Exception]]] = None):
        self._states: Dict[str, Union[Any, Exception]] = dict(states or {})
        self.requests: List[str] = []

    def record_state(self, agent_id: str, state: Union[Any, Exception]) -> None:
        self._states[agent_id] = state

    def fetch_state(self, vm: VMRecord) -> Any:
        self.requests.append(vm.agent_id)
        try:
            state = self._states[vm.agent_id]
        except KeyError:
            logger.warning("No agent answered for %s (VM %s)", vm.agent_id, vm.cid)
            raise AgentTransportError(
                f"Timed out waiting for agent '{vm.agent_id}' on VM '{vm.cid}'",
                vm_cid=vm.cid,
            ) from None

        if isinstance(state, Exception):
            raise state
        # Every caller gets its own copy, as if freshly decoded off the wire
        return copy.deepcopy(state)


__all__ = ["AgentGateway", "AgentTransportError", "RecordedAgentGateway"]
