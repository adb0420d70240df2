"""Thread-safe registry of run_id -> running child processes for hard termination."""
import os
import signal
import asyncio
import threading
import logging
from typing import Dict, List, Set

logger = logging.getLogger(__name__)
_lock = threading.Lock()
_registry: Dict[str, Set[asyncio.subprocess.Process]] = {}


def register(run_id: str, process: asyncio.subprocess.Process) -> None:
    with _lock:
        _registry.setdefault(run_id, set()).add(process)
        logger.debug(f"Registered process {process.pid} for run {run_id}")


def unregister(run_id: str, process: asyncio.subprocess.Process) -> None:
    with _lock:
        processes = _registry.get(run_id)
        if processes is None:
            return
        processes.discard(process)
        if not processes:
            del _registry[run_id]
        logger.debug(f"Unregistered process {process.pid} for run {run_id}")


def get_processes(run_id: str) -> List[asyncio.subprocess.Process]:
    with _lock:
        return list(_registry.get(run_id, ()))


def signal_tree(process: asyncio.subprocess.Process, sig: int) -> None:
    """Signal the child's whole process group (children run in their own session)."""
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError as e:
        logger.warning(f"Could not signal process group {process.pid}: {e}")


async def kill_tree(process: asyncio.subprocess.Process, grace_seconds: float = 5.0) -> None:
    """SIGTERM the process tree, then SIGKILL whatever is left after the grace period."""
    signal_tree(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        signal_tree(process, signal.SIGKILL)
        await process.wait()


async def terminate(run_id: str, grace_seconds: float = 3.0) -> bool:
    """Terminate every process of run_id. Returns True if any process was found."""
    processes = get_processes(run_id)
    if not processes:
        return False
    for process in processes:
        try:
            await kill_tree(process, grace_seconds)
        except Exception as e:
            logger.warning(f"Error terminating process {process.pid} of run {run_id}: {e}")
        finally:
            unregister(run_id, process)
    return True


async def terminate_all(grace_seconds: float = 3.0) -> int:
    with _lock:
        run_ids = list(_registry)
    for run_id in run_ids:
        await terminate(run_id, grace_seconds)
    return len(run_ids)
