from __future__ import annotations

import asyncio
import re
import shutil

from .models import ToolCheckResult

_VERSION_RE = re.compile(r"ffmpeg version (\S+)")


async def check_ffmpeg(binary: str = "ffmpeg", timeout_s: float = 10) -> ToolCheckResult:
    """Run ``<binary> -version``. Never raises; any failure means unavailable."""
    try:
        proc = await asyncio.create_subprocess_exec(
            binary,
            "-version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            out, _ = await asyncio.wait_for(proc.communicate(), timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ToolCheckResult(available=False)
        if proc.returncode != 0:
            return ToolCheckResult(available=False)

        m = _VERSION_RE.search(out.decode("utf-8", errors="replace"))
        return ToolCheckResult(
            available=True,
            version=m.group(1) if m else None,
            path=shutil.which(binary) or binary,
        )
    except (OSError, ValueError):
        return ToolCheckResult(available=False)
