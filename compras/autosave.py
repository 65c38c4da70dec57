from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping

from compras.orders import NewOrder, create_order, order_content_hash, validate_order
from compras.tipos import ProductInfo

logger = logging.getLogger(__name__)

SaveFn = Callable[[NewOrder], Awaitable[Any]]
NotifyFn = Callable[[str, str], None]

MSG_SAVED = "Orden guardada automáticamente"
MSG_FAILED = "Error al guardar automáticamente"


@dataclass(frozen=True)
class AutosavePolicy:
    debounce_seconds: float = 2.0
    interval_seconds: float = 60.0
    # None: keep retrying on every interval.
    max_failures: int | None = None
    # 1.0: no backoff, every retry waits one interval.
    backoff_factor: float = 1.0

    def next_delay(self, failures: int) -> float:
        if failures <= 0 or self.backoff_factor <= 1.0:
            return float(self.interval_seconds)
        return float(self.interval_seconds) * (float(self.backoff_factor) ** failures)


class AutosaveState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    SCHEDULED = "scheduled"
    SAVING = "saving"
    DISPOSED = "disposed"


def _log_notify(level: str, message: str) -> None:
    if level == "error":
        logger.error(message)
    else:
        logger.info(message)


class AutosaveCoordinator:
    """Background saver for one order being edited.

    Changes restart a debounce timer; once the editor is quiet an interval timer
    is armed and, when it fires, the order is saved if its content changed since
    the last successful save. At most one save runs at a time. After
    :meth:`dispose` no timer fires and a save still in flight finishes silently.

    Must be driven from a running asyncio loop.
    """

    def __init__(
        self,
        on_save: SaveFn,
        *,
        policy: AutosavePolicy | None = None,
        notify: NotifyFn | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._on_save = on_save
        self.policy = policy or AutosavePolicy()
        self._notify = notify or _log_notify
        self._loop = loop

        self._provider_id = ""
        self._selection: dict[str, Decimal] = {}
        self._products: list[ProductInfo] = []

        self._debounce: asyncio.TimerHandle | None = None
        self._interval: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self._saving = False
        self._disposed = False
        self._failures = 0

        self.last_saved_hash: str | None = None
        self.last_saved_at: datetime | None = None
        self.save_count = 0

    # --- state ---

    @property
    def state(self) -> AutosaveState:
        if self._disposed:
            return AutosaveState.DISPOSED
        if self._saving:
            return AutosaveState.SAVING
        if self._debounce is not None:
            return AutosaveState.ARMED
        if self._interval is not None:
            return AutosaveState.SCHEDULED
        return AutosaveState.IDLE

    @property
    def is_saving(self) -> bool:
        return self._saving

    @property
    def failures(self) -> int:
        return self._failures

    def current_hash(self) -> str:
        return order_content_hash(self._provider_id, self._selection)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # --- events ---

    def notify_change(
        self,
        provider_id: str,
        selected_products: Mapping[str, float | int | Decimal],
        products: Iterable[ProductInfo],
    ) -> None:
        if self._disposed:
            return

        self._provider_id = provider_id or ""
        self._selection = {str(k): Decimal(str(v)) for k, v in (selected_products or {}).items()}
        self._products = list(products or [])
        self._failures = 0

        self._cancel(debounce=True, interval=True)
        if not self._provider_id or not self._selection:
            return

        self._debounce = self._get_loop().call_later(self.policy.debounce_seconds, self._on_debounce)

    def dispose(self) -> None:
        """Stop all timers. A save already running completes without side effects."""
        self._disposed = True
        self._cancel(debounce=True, interval=True)

    async def wait_idle(self) -> None:
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    async def tick(self) -> bool:
        """Run one interval step now; returns True when a save was attempted."""
        if self._disposed or not self._provider_id or not self._selection:
            return False
        self._cancel(interval=True)
        task = self._on_interval()
        if task is None:
            return False
        await task
        return True

    # --- timers ---

    def _cancel(self, *, debounce: bool = False, interval: bool = False) -> None:
        if debounce and self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        if interval and self._interval is not None:
            self._interval.cancel()
            self._interval = None

    def _schedule_interval(self) -> None:
        if self._disposed:
            return
        self._cancel(interval=True)
        delay = self.policy.next_delay(self._failures)
        self._interval = self._get_loop().call_later(delay, self._on_interval)

    def _on_debounce(self) -> None:
        self._debounce = None
        self._schedule_interval()

    def _on_interval(self) -> asyncio.Task | None:
        self._interval = None
        if self._disposed:
            return None

        if self._saving:
            self._schedule_interval()
            return None

        content_hash = self.current_hash()
        if content_hash == self.last_saved_hash:
            self._schedule_interval()
            return None

        self._saving = True
        self._task = self._get_loop().create_task(
            self._save(content_hash, self._provider_id, dict(self._selection), list(self._products))
        )
        return self._task

    async def _save(
        self,
        content_hash: str,
        provider_id: str,
        selection: dict[str, Decimal],
        products: list[ProductInfo],
    ) -> None:
        try:
            if self._disposed:
                return
            order = create_order(provider_id, selection, products)
            error = validate_order(order, products)
            if error:
                logger.warning("Autoguardado omitido por error de validación: %s", error)
                return

            self.save_count += 1
            await self._on_save(order)
            if self._disposed:
                return

            self.last_saved_hash = content_hash
            self.last_saved_at = datetime.utcnow()
            self._failures = 0
            self._notify("success", MSG_SAVED)
        except Exception:
            logger.exception("Error en autoguardado")
            if self._disposed:
                return
            self._failures += 1
            self._notify("error", MSG_FAILED)
        finally:
            self._saving = False
            if not self._disposed and self._debounce is None:
                limit = self.policy.max_failures
                if limit and self._failures >= limit:
                    logger.warning("Autoguardado detenido tras %s fallos consecutivos", self._failures)
                else:
                    self._schedule_interval()
