import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from launchpad.modules.deployments import process_registry

logger = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 4000


@dataclass
class CommandResult:
    args: Sequence[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def tail(self, chars: int = OUTPUT_TAIL_CHARS) -> str:
        text = (self.stderr or self.stdout).strip()
        return text[-chars:]


class CommandTimeoutError(Exception):
    def __init__(self, args: Sequence[str], timeout: float):
        super().__init__(f"{' '.join(args)} timed out after {timeout:g}s")
        self.command = list(args)
        self.timeout = timeout


class CommandNotFoundError(Exception):
    def __init__(self, args: Sequence[str]):
        super().__init__(f"{args[0]} not found. Please install it and make sure it is on PATH")
        self.command = list(args)


CommandRunner = Callable[..., Awaitable[CommandResult]]


async def run_command(
    args: Sequence[str],
    cwd: str,
    timeout: float,
    env: Optional[Dict[str, str]] = None,
    run_id: Optional[str] = None,
    grace_seconds: float = 5.0,
) -> CommandResult:
    """
    Run one subprocess to completion with a deadline.

    The child gets its own session so that on deadline the whole tree is
    terminated, not just the direct child. Extra env vars are layered over
    this process's environment.
    """
    child_env = os.environ.copy()
    if env:
        child_env.update(env)

    logger.info(f"Executing: {' '.join(args)} (cwd={cwd})")
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=child_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except FileNotFoundError:
        raise CommandNotFoundError(args)

    if run_id:
        process_registry.register(run_id, process)
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Command timed out after {timeout:g}s: {' '.join(args)}")
        await process_registry.kill_tree(process, grace_seconds)
        raise CommandTimeoutError(args, timeout)
    except asyncio.CancelledError:
        await process_registry.kill_tree(process, grace_seconds)
        raise
    finally:
        if run_id:
            process_registry.unregister(run_id, process)

    result = CommandResult(
        args=list(args),
        exit_code=process.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    if not result.ok:
        logger.warning(f"Command exited with {result.exit_code}: {' '.join(args)}")
    return result
