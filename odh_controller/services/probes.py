"""
HTTP endpoints for orchestration health checks and debugging.

The probe server answers /healthz and /readyz by running the registered
checks; a check passes unless it raises. The debug server dumps the stacks
of running asyncio tasks.
"""

import asyncio
import io
from typing import Callable, Dict, Optional, Tuple

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

Check = Callable[[], None]


def ping() -> None:
    """Always healthy."""


def run_checks(checks: Dict[str, Check]) -> Dict[str, Optional[str]]:
    """Run every check; map check name to None (passed) or the failure message."""
    results: Dict[str, Optional[str]] = {}
    for name, check in checks.items():
        try:
            check()
        except Exception as e:
            results[name] = str(e) or e.__class__.__name__
        else:
            results[name] = None
    return results


class _Server:
    def __init__(self, address: Tuple[str, int]):
        self.host, self.port = address
        self.app = web.Application()
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None


class ProbeServer(_Server):
    """Serves /healthz and /readyz from two named sets of checks."""

    def __init__(self, address: Tuple[str, int], healthz: Dict[str, Check], readyz: Dict[str, Check]):
        super().__init__(address)
        self.healthz = healthz
        self.readyz = readyz
        self.app.router.add_get("/healthz", self._handle_healthz)
        self.app.router.add_get("/readyz", self._handle_readyz)

    async def start(self) -> None:
        await super().start()
        logger.info("starting health probe server", host=self.host, port=self.port)

    async def _handle_healthz(self, request: web.Request) -> web.Response:
        return self._respond(self.healthz)

    async def _handle_readyz(self, request: web.Request) -> web.Response:
        return self._respond(self.readyz)

    def _respond(self, checks: Dict[str, Check]) -> web.Response:
        failed = {name: msg for name, msg in run_checks(checks).items() if msg is not None}
        if not failed:
            return web.Response(text="ok")
        lines = [f"[-]{name} failed: {msg}" for name, msg in failed.items()]
        return web.Response(status=500, text="\n".join(lines))


class DebugServer(_Server):
    """Serves /debug/tasks, a dump of every running asyncio task's stack."""

    def __init__(self, address: Tuple[str, int]):
        super().__init__(address)
        self.app.router.add_get("/debug/tasks", self._handle_tasks)

    async def start(self) -> None:
        await super().start()
        logger.info("starting debug server", host=self.host, port=self.port)

    async def _handle_tasks(self, request: web.Request) -> web.Response:
        out = io.StringIO()
        for task in asyncio.all_tasks():
            out.write(f"--- {task.get_name()}\n")
            task.print_stack(file=out)
        return web.Response(text=out.getvalue())
