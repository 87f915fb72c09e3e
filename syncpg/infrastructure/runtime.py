"""
Execution engine and borrow-extension leases.

Every `Client` owns one `Runtime`: a private asyncio event loop (via
`asyncio.Runner`) on which all of the client's coroutines run. The runtime
offers a single primitive, ``block_on(coroutine) -> result``, which runs the
coroutine to completion on the calling thread.

Handles that outlive the call that produced them (row iterators, COPY
sessions, transactions) take a `Lease` on the runtime. Leases form a stack:
only the top-most lease, or the client itself when nothing is leased, may
drive the runtime. Ending a lease that is not on top first abandons the
leases above it, so a transaction ended while one of its row iterators is
still open closes the iterator before rolling back.
"""

from __future__ import annotations

import asyncio
import itertools
import sys
import threading
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Tuple, TypeVar

from syncpg.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

Remediation = Callable[[], Awaitable[Any]]

_lease_ids = itertools.count(1)


def _loop_factory() -> Optional[Callable[[], asyncio.AbstractEventLoop]]:
    # psycopg's async mode cannot run on the Proactor loop
    if sys.platform == "win32":
        return asyncio.SelectorEventLoop
    return None


def _in_async_context() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def ensure_sync_context() -> None:
    """Raise `RuntimeError` if called from a thread running an event loop."""
    if _in_async_context():
        raise RuntimeError(
            "syncpg's blocking API cannot be used from an async context; "
            "use psycopg.AsyncConnection directly inside event loops"
        )


async def _call(fn: Callable[[], Awaitable[T]]) -> T:
    return await fn()


class Lease:
    """
    Exclusive right to drive a `Runtime` for the lifetime of one handle.

    Parameters
    ----------
    runtime : Runtime
        The runtime being leased.
    name : str
        Holder description used in error messages and logs.
    remediation : callable, optional
        Zero-argument callable returning an awaitable that puts the
        connection back into a usable state when the handle is abandoned
        (abort a COPY, drain a stream, roll back).
    """

    def __init__(self, runtime: "Runtime", name: str, remediation: Optional[Remediation] = None) -> None:
        self._runtime = runtime
        self.name = f"{name}#{next(_lease_ids)}"
        self._remediation = remediation

    @property
    def active(self) -> bool:
        return self._runtime._holds(self)

    @property
    def runtime(self) -> "Runtime":
        return self._runtime

    def block_on(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run ``coro`` to completion; identical to `Runtime.block_on`."""
        return self._runtime._drive(coro, holder=self)

    def lease(self, name: str, remediation: Optional[Remediation] = None) -> "Lease":
        """Stack a new lease on top of this one."""
        return self._runtime._push(name, remediation, holder=self)

    def reclaim(self) -> None:
        """Abandon every lease stacked on top of this one."""
        self._runtime._reclaim(self)

    def release(self) -> None:
        """End the lease normally; the handle finished its work."""
        self._runtime._pop(self, remediate=False)

    def abandon(self) -> None:
        """End the lease, running its remediation first."""
        self._runtime._pop(self, remediate=True)

    def __repr__(self) -> str:
        state = "active" if self.active else "ended"
        return f"<Lease {self.name} {state}>"


class Runtime:
    """
    Private event loop owned by exactly one client.

    Not thread-safe: two threads driving the same runtime at once is a caller
    error that surfaces as asyncio's ``RuntimeError``.
    """

    def __init__(self, name: str = "client") -> None:
        self.name = name
        self._runner = asyncio.Runner(loop_factory=_loop_factory())
        self._leases: List[Lease] = []
        self._deferred: List[Tuple[str, Remediation]] = []
        self._busy = False
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def depth(self) -> int:
        """Number of outstanding leases."""
        return len(self._leases)

    @property
    def holder(self) -> Optional[Lease]:
        return self._leases[-1] if self._leases else None

    def block_on(self, coro: Coroutine[Any, Any, T]) -> T:
        """
        Run ``coro`` on the private loop and return its result.

        Raises
        ------
        RuntimeError
            If the runtime is closed or leased, or the caller is itself
            running inside an event loop.
        """
        return self._drive(coro, holder=None)

    def lease(self, name: str, remediation: Optional[Remediation] = None) -> Lease:
        return self._push(name, remediation, holder=None)

    def close(self, finalizer: Optional[Coroutine[Any, Any, Any]] = None) -> None:
        """
        Abandon every lease, run ``finalizer`` and shut the loop down.

        Idempotent. Remediation and finalizer failures are logged, never
        raised.
        """
        if self._closed:
            if finalizer is not None:
                finalizer.close()
            return
        if _in_async_context():
            if finalizer is not None:
                finalizer.close()
            raise RuntimeError("cannot close a syncpg client from an async context")

        while self._leases:
            self._pop(self._leases[-1], remediate=True)
        self._run_deferred()
        if finalizer is not None:
            self._run_quietly(self.name, finalizer)
        self._closed = True
        self._runner.close()
        log.debug("runtime closed", extra={"lease": self.name})

    # -- internals -------------------------------------------------------

    def _holds(self, lease: Lease) -> bool:
        return any(held is lease for held in self._leases)

    def _check_holder(self, holder: Optional[Lease]) -> None:
        if self._closed:
            raise RuntimeError("client is closed")
        if holder is not None and not self._holds(holder):
            raise RuntimeError(f"{holder.name} is no longer usable; its lease has ended")
        top = self.holder
        if holder is not top:
            who = holder.name if holder is not None else self.name
            raise RuntimeError(f"{who} cannot use the connection while it is leased by {top.name}")

    def _drive(self, coro: Coroutine[Any, Any, T], holder: Optional[Lease]) -> T:
        try:
            self._check_holder(holder)
            ensure_sync_context()
        except RuntimeError:
            coro.close()
            raise
        self._run_deferred()
        self._busy = True
        try:
            return self._runner.run(coro)
        finally:
            self._busy = False

    def _push(self, name: str, remediation: Optional[Remediation], holder: Optional[Lease]) -> Lease:
        self._check_holder(holder)
        lease = Lease(self, name, remediation)
        self._leases.append(lease)
        log.debug("lease acquired", extra={"lease": lease.name, "depth": len(self._leases)})
        return lease

    def _pop(self, lease: Lease, remediate: bool) -> None:
        if not self._holds(lease):
            return
        self._reclaim(lease)
        with self._lock:
            self._leases = [held for held in self._leases if held is not lease]
            depth = len(self._leases)
        if remediate:
            self._remediate(lease)
        log.debug("lease released", extra={"lease": lease.name, "depth": depth})

    def _reclaim(self, lease: Lease) -> None:
        with self._lock:
            if not self._holds(lease):
                return
            index = next(i for i, held in enumerate(self._leases) if held is lease)
            above = self._leases[index + 1 :]
            del self._leases[index + 1 :]
        for inner in reversed(above):
            log.debug("abandoning nested lease", extra={"lease": inner.name, "depth": index + 1})
            self._remediate(inner)

    def _remediate(self, lease: Lease) -> None:
        remediation = lease._remediation
        if remediation is None or self._closed:
            return
        if self._busy or _in_async_context():
            # Called from a finalizer while a coroutine is running: retry
            # before the next operation instead.
            self._deferred.append((lease.name, remediation))
            return
        self._run_quietly(lease.name, _call(remediation))

    def _run_deferred(self) -> None:
        while self._deferred and not self._closed:
            name, remediation = self._deferred.pop(0)
            self._run_quietly(name, _call(remediation))

    def _run_quietly(self, name: str, coro: Coroutine[Any, Any, Any]) -> None:
        self._busy = True
        try:
            self._runner.run(coro)
        except Exception:
            log.warning("cleanup of %s failed", name, exc_info=True, extra={"lease": name})
        finally:
            self._busy = False


__all__ = ["Lease", "Runtime", "ensure_sync_context"]
