# FILE: converter/client/store.py
"""
Client-side conversion state.

ConversionStore is the single source of truth for one conversion view. It is
changed only by start_conversion(), reset(), fail() and apply(event).

Status:  idle -> phase1 -> phase2 -> phase3 -> phase4 -> complete | error

Every stream gets a generation number from start_conversion(). Events applied
with an older generation belong to a superseded stream and are ignored, as are
events arriving after a terminal state.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from converter.client.sse import SSEEvent
from converter.pipeline.models import ConversionStatus, PendingSpec

logger = logging.getLogger(__name__)

_PHASE_STARTS = {f"phase{n}_start": n for n in (1, 2, 3, 4)}


class ConversionStore:
    def __init__(self):
        self._generation = 0
        self._cancel: Optional[Callable[[], None]] = None
        self._reset_state()

    def _reset_state(self) -> None:
        self.status = ConversionStatus.IDLE
        self.phase = 0
        self.error: Optional[str] = None
        self.error_details: Optional[str] = None
        self._contracts: Dict[str, Dict[str, Any]] = {}
        self._specs: List[PendingSpec] = []
        self.transactions: List[Dict[str, Any]] = []
        self.retry_attempt = 1
        self.last_validation: Optional[Dict[str, Any]] = None
        self.deployment_guide: Optional[Dict[str, Any]] = None
        self.session_id: Optional[str] = None

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def loading(self) -> bool:
        return self.status not in (ConversionStatus.IDLE, ConversionStatus.COMPLETE, ConversionStatus.ERROR)

    @property
    def contracts(self) -> List[Dict[str, Any]]:
        """Ready contracts, in first-announced order."""
        return [copy.deepcopy(c) for c in self._contracts.values()]

    @property
    def contract_names(self) -> List[str]:
        return list(self._contracts)

    @property
    def pending_contracts(self) -> List[PendingSpec]:
        return [s for s in self._specs if s.name not in self._contracts]

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _cancel_current(self) -> None:
        if self._cancel is not None:
            cancel, self._cancel = self._cancel, None
            cancel()

    def start_conversion(self, cancel: Optional[Callable[[], None]] = None) -> int:
        """Cancel any in-flight stream, reset, and enter phase 1. Returns the new generation."""
        self._cancel_current()
        self._generation += 1
        self._reset_state()
        self._cancel = cancel
        self.status = ConversionStatus.PHASE1
        self.phase = 1
        return self._generation

    def set_cancel(self, cancel: Callable[[], None], generation: int) -> None:
        if generation == self._generation:
            self._cancel = cancel

    def reset(self) -> None:
        self._cancel_current()
        self._generation += 1
        self._reset_state()

    def fail(self, message: str, generation: Optional[int] = None) -> None:
        """Record a transport-level failure (HTTP rejection, dropped connection)."""
        if generation is not None and generation != self._generation:
            return
        if self.status.is_terminal:
            return
        self.status = ConversionStatus.ERROR
        self.error = message
        self._cancel = None

    def apply(self, event: SSEEvent, generation: Optional[int] = None) -> bool:
        """Apply one stream event. Returns False when the event was ignored."""
        if generation is not None and generation != self._generation:
            logger.debug("[store] Ignoring %s from stale stream %s", event.type, generation)
            return False
        if self.status.is_terminal or self.status == ConversionStatus.IDLE:
            logger.debug("[store] Ignoring %s in state %s", event.type, self.status.value)
            return False

        data = event.data
        kind = event.type

        if kind in _PHASE_STARTS:
            phase = _PHASE_STARTS[kind]
            if phase >= self.phase:
                self.phase = phase
                self.status = ConversionStatus.for_phase(phase)
        elif kind == "transactions_ready":
            self.transactions = list(data.get("transactions") or [])
            self._specs = [PendingSpec.from_dict(s) for s in data.get("contractSpecs") or []]
        elif kind == "artifact_ready":
            self._add_contract(data.get("contract") or {})
        elif kind == "retrying":
            self.retry_attempt = int(data.get("attempt") or self.retry_attempt)
        elif kind == "validation":
            self.last_validation = dict(data)
        elif kind == "done":
            for contract in data.get("contracts") or []:
                self._add_contract(contract)
            self.deployment_guide = data.get("deploymentGuide")
            self.session_id = data.get("sessionId")
            self.status = ConversionStatus.COMPLETE
            self.phase = 5
            self._cancel = None
        elif kind == "error":
            self.status = ConversionStatus.ERROR
            self.error = data.get("message") or "Conversion failed"
            self.error_details = data.get("details")
            self._cancel = None
        elif kind.endswith("_complete"):
            pass
        else:
            logger.debug("[store] Unknown event type %s", kind)
            return False
        return True

    def _add_contract(self, contract: Dict[str, Any]) -> None:
        name = contract.get("name")
        if not name:
            logger.warning("[store] Contract without a name ignored")
            return
        # dict assignment keeps the original position for an existing key
        self._contracts[name] = copy.deepcopy(contract)
