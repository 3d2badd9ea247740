"""Bounded concurrent fan-out with per-branch timeout and a turn deadline.

Every retrieval branch goes through :func:`fan_out`.  A branch that raises
or exceeds ``branch_timeout`` keeps its empty default; when ``deadline``
expires the shared cancel signal is set, stragglers are cancelled and the
results collected so far are returned.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from enclave.core.errors import RetrievalError, RetrievalTimeout

logger = logging.getLogger("enclave.fanout")

Branch = Callable[[asyncio.Event], Awaitable[Any]]


@dataclass
class FanOutResult:
    results: dict[str, Any]
    failures: dict[str, RetrievalError] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def ok(self) -> list[str]:
        bad = set(self.failures) | set(self.cancelled)
        return [name for name in self.results if name not in bad]


async def fan_out(
    branches: dict[str, Branch],
    *,
    max_concurrency: int = 4,
    branch_timeout: float = 4.0,
    deadline: float | None = None,
    default: Callable[[], Any] = list,
) -> FanOutResult:
    """Run *branches* concurrently and return whatever finished in time.

    Each branch receives the shared cancel :class:`asyncio.Event`; long
    running branches should check it between awaits.
    """
    started = time.perf_counter()
    cancel = asyncio.Event()
    sem = asyncio.Semaphore(max(1, max_concurrency))
    out = FanOutResult(results={name: default() for name in branches})

    async def _run(name: str, branch: Branch) -> None:
        async with sem:
            if cancel.is_set():
                out.cancelled.append(name)
                return
            try:
                out.results[name] = await asyncio.wait_for(
                    branch(cancel), timeout=branch_timeout
                )
            except asyncio.TimeoutError:
                out.failures[name] = RetrievalTimeout(
                    name, f"exceeded {branch_timeout:.1f}s"
                )
                logger.warning("[FANOUT] branch=%s timed out after %.1fs", name, branch_timeout)
            except Exception as exc:
                out.failures[name] = RetrievalError(name, f"{type(exc).__name__}: {exc}")
                logger.warning("[FANOUT] branch=%s failed: %s", name, exc)

    tasks = [
        asyncio.create_task(_run(name, branch), name=f"branch:{name}")
        for name, branch in branches.items()
    ]
    if tasks:
        _, pending = await asyncio.wait(tasks, timeout=deadline)
        if pending:
            cancel.set()
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            out.cancelled.extend(
                task.get_name().removeprefix("branch:") for task in tasks if task in pending
            )
            logger.warning(
                "[FANOUT] deadline %.1fs hit, cancelled %d branch(es)",
                deadline or 0.0, len(pending),
            )

    # A cancelled branch never keeps a partial value.
    for name in out.cancelled:
        out.results[name] = default()

    out.elapsed_ms = int((time.perf_counter() - started) * 1000)
    return out
