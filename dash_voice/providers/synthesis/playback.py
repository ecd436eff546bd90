"""
Subprocess playback helpers shared by the synthesis providers.
"""

import asyncio
import shutil
from typing import Optional, Callable, Any


def notify(callback: Optional[Callable[..., None]], *args: Any) -> None:
    """Invoke a playback callback if one was supplied."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as e:
        print(f"⚠️  Playback callback error: {e}")


def find_player(*candidates: str) -> Optional[str]:
    """Return the first available player command."""
    for name in candidates:
        if shutil.which(name):
            return name
    return None


async def terminate_process(process: Optional[asyncio.subprocess.Process], timeout: float = 1.0) -> None:
    """Terminate a playback process, killing it if it does not exit in time."""
    if process is None or process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
    except ProcessLookupError:
        # Already exited
        pass
