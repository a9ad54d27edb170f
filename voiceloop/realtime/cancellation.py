"""
Hierarchical Cancellation Scopes

A CancellationScope is a one-shot broadcast signal shared by every operation
belonging to one listening or speaking session:

- Once cancelled it stays cancelled
- Observers registered with register() run exactly once, on cancellation
- Child scopes inherit the parent's cancellation but can be cancelled on
  their own without touching the parent

Usage:
    app_scope = CancellationScope(name="application")

    with app_scope.child("speaking") as speaking:
        handle = speaking.register(player.stop)
        ...
        speaking.cancel("barge-in")   # app_scope is unaffected

All methods must be called from the event loop thread.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, TypeVar

from voiceloop.errors import OperationCancelled
from voiceloop.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
Observer = Callable[[], None]


class Registration:
    """Handle returned by CancellationScope.register(); dispose() to unregister."""

    def __init__(self, scope: "CancellationScope", observer: Observer):
        self._scope = scope
        self._observer = observer

    def dispose(self) -> None:
        self._scope._remove_observer(self._observer)

    def __enter__(self) -> "Registration":
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()


class CancellationScope:
    """One-shot cancellation token with parent/child propagation."""

    def __init__(self, parent: Optional["CancellationScope"] = None, name: str = ""):
        self._name = name or "scope"
        self._parent = parent
        self._cancelled = False
        self._reason: Optional[str] = None
        self._event = asyncio.Event()
        self._observers: List[Observer] = []
        self._children: List["CancellationScope"] = []

        if parent is not None:
            parent._children.append(self)
            if parent.is_cancelled:
                self.cancel(parent.reason)

    # ========================================================================
    # Triggering
    # ========================================================================

    def cancel(self, reason: Optional[str] = None) -> bool:
        """
        Trigger the scope.

        Returns:
            True if this call cancelled the scope, False if it already was
        """
        if self._cancelled:
            return False

        self._cancelled = True
        self._reason = reason
        self._event.set()
        logger.debug(f"Scope '{self._name}' cancelled: {reason or 'no reason'}")

        observers, self._observers = self._observers, []
        for observer in observers:
            try:
                observer()
            except Exception as e:
                logger.error(f"Cancellation observer failed in '{self._name}': {e}")

        for child in list(self._children):
            child.cancel(reason)
        return True

    def child(self, name: str = "") -> "CancellationScope":
        """Derive a scope that is cancelled whenever this one is."""
        return CancellationScope(parent=self, name=name)

    def detach(self) -> None:
        """Stop receiving the parent's cancellation (used when a child session ends)."""
        if self._parent is not None:
            try:
                self._parent._children.remove(self)
            except ValueError:
                pass
            self._parent = None

    def __enter__(self) -> "CancellationScope":
        return self

    def __exit__(self, *exc) -> None:
        self.detach()

    # ========================================================================
    # Observing
    # ========================================================================

    def register(self, observer: Observer) -> Registration:
        """
        Run observer once when the scope is cancelled.

        If the scope is already cancelled the observer runs immediately.
        """
        if self._cancelled:
            observer()
        else:
            self._observers.append(observer)
        return Registration(self, observer)

    def _remove_observer(self, observer: Observer) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    async def wait(self) -> None:
        """Suspend until the scope is cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(self._reason)

    async def run(self, aw: Awaitable[T], timeout: Optional[float] = None) -> T:
        """
        Race an awaitable against this scope and an optional deadline.

        The losing operation is cancelled and awaited before returning.

        Raises:
            OperationCancelled: The scope fired first
            asyncio.TimeoutError: The deadline elapsed first
        """
        task = asyncio.ensure_future(aw)
        if self._cancelled:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise OperationCancelled(self._reason)

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if self._cancelled:
            raise OperationCancelled(self._reason)
        raise asyncio.TimeoutError()

    async def sleep(self, delay: float) -> bool:
        """
        Sleep unless cancelled first.

        Returns:
            True if the full delay elapsed, False if the scope fired
        """
        try:
            await self.run(asyncio.sleep(delay))
            return True
        except OperationCancelled:
            return False

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> Optional["CancellationScope"]:
        return self._parent

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"CancellationScope({self._name!r}, {state})"
