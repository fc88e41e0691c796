"""Background progression of placed orders through payment and fulfilment."""

import threading
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from ..models.commerce import OrderStatus, PaymentStatus
from ..utils.exceptions import ForeverPawsError
from ..utils.logger import get_logger

logger = get_logger(__name__)


def new_tracking_number() -> str:
    return f"FP{uuid4().hex[:10].upper()}"


def default_steps() -> List[Dict]:
    return [
        {"payment_status": PaymentStatus.PAID},
        {"status": OrderStatus.CONFIRMED},
        {"status": OrderStatus.PROCESSING},
        {"status": OrderStatus.SHIPPED, "tracking_number": None},
        {"status": OrderStatus.DELIVERED},
    ]


class OrderStatusSimulator:
    """
    Advances each new order one step every `step_seconds` on a daemon thread.

    Best-effort: a failed step (order cancelled, wiped on sign-out, store
    error) is logged and ends that order's progression.
    """

    def __init__(self, advance: Callable[..., object], step_seconds: float = 2.0):
        self._advance = advance
        self.step_seconds = step_seconds
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    def start(self, order_id: str, user_id: str) -> Optional[threading.Thread]:
        if self._stop.is_set():
            return None
        thread = threading.Thread(
            target=self._run,
            args=(order_id, user_id),
            name=f"order-sim-{order_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()
        logger.debug("Order simulation started", order_id=order_id)
        return thread

    def _run(self, order_id: str, user_id: str) -> None:
        for step in default_steps():
            if self._stop.wait(self.step_seconds):
                return
            if "tracking_number" in step:
                step["tracking_number"] = new_tracking_number()
            try:
                self._advance(order_id, user_id=user_id, **step)
            except ForeverPawsError as e:
                logger.warning("Order simulation stopped", order_id=order_id, step=str(step), error=str(e))
                return
            except Exception as e:
                logger.exception("Order simulation failed", order_id=order_id, error=str(e))
                return
        logger.info("Order simulation finished", order_id=order_id)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
