from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Any, Literal

from prassist.config import IndexerConfig
from prassist.errors import IndexerError


class IndexerSidecar:
    """Owns the single local vector-index process for one caller.

    The handle is passed around explicitly; nothing about the process lives in
    module globals.
    """

    def __init__(
        self,
        config: IndexerConfig,
        *,
        event_hook: Callable[[dict[str, Any]], None] | None = None,
        stop_timeout: float = 5.0,
    ) -> None:
        self.config = config
        self.event_hook = event_hook
        self.stop_timeout = stop_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._lock = asyncio.Lock()

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    @property
    def status(self) -> Literal["running", "stopped"]:
        if self._process is None or self._process.returncode is not None:
            return "stopped"
        return "running"

    def build_command(self) -> list[str]:
        command = [self.config.binary_path]
        if self.config.config_path:
            command.extend(["--config-path", self.config.config_path])
        return command

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.config.data_dir:
            env["QDRANT__STORAGE__STORAGE_PATH"] = self.config.data_dir
        env["QDRANT__SERVICE__HOST"] = self.config.host
        env["QDRANT__SERVICE__HTTP_PORT"] = str(self.config.port)
        return env

    async def ensure_running(self) -> None:
        async with self._lock:
            if self.status == "running":
                return
            binary = Path(self.config.binary_path).expanduser() if self.config.binary_path else None
            if binary is None or not binary.is_file():
                raise IndexerError(
                    "Indexer binary not found. Set [indexer] binary_path to the local binary."
                )
            try:
                self._process = await asyncio.create_subprocess_exec(
                    *self.build_command(),
                    cwd=str(binary.parent),
                    env=self.build_env(),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
            except OSError as exc:
                raise IndexerError(f"Could not start indexer: {exc}") from exc
            self._emit(
                {
                    "event": "indexer_started",
                    "pid": self._process.pid,
                    "host": self.config.host,
                    "port": self.config.port,
                }
            )

    async def stop(self) -> None:
        async with self._lock:
            process = self._process
            self._process = None
            if process is None or process.returncode is not None:
                return
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
            except TimeoutError:
                with suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            self._emit({"event": "indexer_stopped", "exit_code": process.returncode})


@asynccontextmanager
async def acquire_indexer(
    config: IndexerConfig,
    *,
    event_hook: Callable[[dict[str, Any]], None] | None = None,
) -> AsyncIterator[IndexerSidecar]:
    sidecar = IndexerSidecar(config, event_hook=event_hook)
    await sidecar.ensure_running()
    try:
        yield sidecar
    finally:
        await sidecar.stop()
