from __future__ import annotations
import asyncio
import os
from dataclasses import dataclass
from pathlib import Path

import structlog

from .config import DEFAULT_USER_AGENT

log = structlog.get_logger()


@dataclass
class TransferResult:
    success: bool
    size: int = 0
    error: str | None = None


async def download_bytes(url: str, dest: str | Path, referer: str = "",
                         user_agent: str = DEFAULT_USER_AGENT) -> TransferResult:
    """
    Fetch ``url`` to ``dest`` with curl; a non-zero exit is a failed transfer.
    curl writes to ``<dest>.part``, which only becomes ``dest`` on success.
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    part = dest.with_name(dest.name + ".part")
    cmd = ["curl", "-L", "-s", "-f", "-o", str(part), "-H", f"User-Agent: {user_agent}"]
    if referer:
        cmd += ["-H", f"Referer: {referer}"]
    cmd.append(url)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return TransferResult(False, error="curl not found on PATH")
    _, stderr = await process.communicate()

    if process.returncode != 0:
        part.unlink(missing_ok=True)
        detail = stderr.decode(errors="replace").strip()[:300]
        msg = f"curl exited with code {process.returncode}"
        if detail:
            msg += f": {detail}"
        log.warning("transfer_failed", dest=str(dest), code=process.returncode)
        return TransferResult(False, error=msg)

    if not part.exists():
        # curl exits 0 without writing anything for an empty body
        part.touch()
    os.replace(part, dest)
    size = dest.stat().st_size
    log.info("transfer_done", dest=str(dest), size=size)
    return TransferResult(True, size=size)
