from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from typing import Optional

from .pipelines import PipelineSpec


@dataclass
class ProcHandle:
    proc: asyncio.subprocess.Process
    spec: PipelineSpec

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode

    @property
    def stderr(self) -> Optional[asyncio.StreamReader]:
        return self.proc.stderr

    async def wait(self) -> int:
        return await self.proc.wait()

    def _signal_group(self, sig: int) -> None:
        if self.proc.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                os.killpg(os.getpgid(self.proc.pid), sig)
            else:
                self.proc.send_signal(sig)
        except ProcessLookupError:
            pass

    def terminate(self) -> None:
        self._signal_group(signal.SIGTERM)

    def kill(self) -> None:
        self._signal_group(getattr(signal, "SIGKILL", signal.SIGTERM))


async def start_process(spec: PipelineSpec) -> ProcHandle:
    # Start a new process group so we can terminate the whole pipeline.
    proc = await asyncio.create_subprocess_exec(
        *spec.argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    return ProcHandle(proc=proc, spec=spec)


def terminate_process(handle) -> None:
    """SIGTERM without waiting for the exit."""
    if handle.returncode is None:
        handle.terminate()


async def stop_process(handle, timeout_s: float = 5) -> None:
    if handle.returncode is not None:
        return
    handle.terminate()
    try:
        await asyncio.wait_for(handle.wait(), timeout_s)
    except asyncio.TimeoutError:
        handle.kill()
        await asyncio.wait_for(handle.wait(), timeout_s)
