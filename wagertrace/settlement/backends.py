"""
wagertrace/settlement/backends.py

Settlement backends: the fiat rails a trace is dispatched to.

dispatch() returns once the rail has ACCEPTED the payment, not once money
has moved. Completion arrives later through a confirmation callback:

    on_confirm(trace_id, external_tx_id, backend_name, status)

The simulated rails stand in for the instant-transfer and card processors.
They fire their callback from a timer thread after a fixed delay.
"""

import logging
import threading
import uuid
from decimal import Decimal
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

ConfirmationCallback = Callable[[str, str, str, str], object]


class SettlementBackend(Protocol):
    name: str

    def dispatch(
        self,
        trace_id:  str,
        amount:    Decimal,
        currency:  str,
        payer:     str,
        payee:     str,
        reference: str,
    ) -> str: ...


class SimulatedBackend:
    """Accepts every dispatch and confirms it after delay_seconds."""

    name   = "simulated"
    prefix = "sim"

    def __init__(
        self,
        on_confirm:    Optional[ConfirmationCallback] = None,
        delay_seconds: float = 2.0,
        outcome:       str = "CONFIRMED",
    ):
        self.on_confirm    = on_confirm
        self.delay_seconds = delay_seconds
        self.outcome       = outcome

    def dispatch(
        self,
        trace_id:  str,
        amount:    Decimal,
        currency:  str,
        payer:     str,
        payee:     str,
        reference: str,
    ) -> str:
        external_tx_id = f"{self.prefix}-{uuid.uuid4().hex[:16]}"
        logger.info(
            "%s accepted %s %s for %s (%s)", self.name, amount, currency, trace_id, external_tx_id
        )
        if self.on_confirm is not None:
            timer = threading.Timer(
                self.delay_seconds,
                self.on_confirm,
                args=(trace_id, external_tx_id, self.name, self.outcome),
            )
            timer.daemon = True
            timer.start()
        return external_tx_id


class SimulatedPixBackend(SimulatedBackend):
    name   = "pix"
    prefix = "pix"


class SimulatedCardBackend(SimulatedBackend):
    name   = "card"
    prefix = "card"

    def __init__(self, on_confirm=None, delay_seconds: float = 3.0, outcome: str = "CONFIRMED"):
        super().__init__(on_confirm, delay_seconds, outcome)
