"""Run one external command on behalf of a job."""

import asyncio
import logging
import os
import re
import shutil
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from hwci.worker.models.job import Job

logger = logging.getLogger(__name__)

_VARIABLE = re.compile(r"\$(?:\{(\w+)\}|(\w+))")


def sanitize_output(data: bytes) -> str:
    """Return valid text from output of an untrusted process.

    Byte sequences that are not valid UTF-8 are dropped.
    """
    return data.decode("utf-8", errors="ignore")


def round_duration(seconds: float) -> int:
    """Round a duration to a precision that makes sense to display.

    Returns nanoseconds: below 1ms precise at 1ns, below 1s precise at 1µs,
    otherwise precise at 1ms.
    """
    ns = max(0, round(seconds * 1_000_000_000))
    if ns < 1_000_000:
        return ns
    if ns < 1_000_000_000:
        return (ns + 500) // 1_000 * 1_000
    return (ns + 500_000) // 1_000_000 * 1_000_000


def _fraction(value: int, unit: int) -> str:
    whole, rest = divmod(value, unit)
    if not rest:
        return str(whole)
    digits = str(rest).rjust(len(str(unit)) - 1, "0").rstrip("0")
    return f"{whole}.{digits}"


def format_duration(seconds: float) -> str:
    """Render a rounded duration, e.g. 512ns, 1.5µs, 12.345ms, 1m15.5s."""
    ns = round_duration(seconds)
    if ns == 0:
        return "0s"
    if ns < 1_000:
        return f"{ns}ns"
    if ns < 1_000_000:
        return _fraction(ns, 1_000) + "µs"
    if ns < 1_000_000_000:
        return _fraction(ns, 1_000_000) + "ms"
    minutes, rest = divmod(ns, 60 * 1_000_000_000)
    hours, minutes = divmod(minutes, 60)
    out = _fraction(rest, 1_000_000_000) + "s"
    if hours:
        return f"{hours}h{minutes}m{out}"
    if minutes:
        return f"{minutes}m{out}"
    return out


def parse_env(env: Sequence[str]) -> dict[str, str]:
    """Parse KEY=VALUE entries; later entries win."""
    out: dict[str, str] = {}
    for entry in env:
        key, _, value = entry.partition("=")
        out[key] = value
    return out


def expand_variables(arg: str, env: Mapping[str, str]) -> str:
    """Replace $VAR and ${VAR} with their value in env, or nothing."""
    return _VARIABLE.sub(lambda m: env.get(m.group(1) or m.group(2), ""), arg)


def resolve_executable(name: str, search_path: str | None) -> str | None:
    """Locate name in search_path without touching the process environment.

    Names with a directory component are returned as-is.
    """
    if os.path.dirname(name):
        return name
    return shutil.which(name, path=search_path)


async def _execute(
    argv: Sequence[str], executable: str | None, cwd: Path, env: Mapping[str, str]
) -> tuple[bytes, int, str]:
    """Return (merged output, exit code, error text)."""
    if executable is None:
        return b"", -1, f"exec: {argv[0]!r}: executable file not found in $PATH"
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *argv[1:],
            cwd=cwd,
            env=dict(env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        return b"", -1, str(e)
    stdout, _ = await process.communicate()
    exit_code = process.returncode if process.returncode is not None else -1
    return stdout, exit_code, f"exit status {exit_code}"


async def run_command(
    job: Job,
    relwd: Path | str,
    env: Sequence[str],
    cmd: Sequence[str],
    path_override: bool = False,
) -> tuple[str, bool]:
    """Run an executable and return its rendered merged stdout+stderr.

    Use path_override when running checks, so the job's bin directory is
    searched first.

    Returns:
        Tuple of (rendered output, success)

    """
    environ = job.environment()
    environ.update(parse_env(env))
    argv = [expand_variables(arg, environ) for arg in cmd]
    cmdline = " ".join([*env, *argv])
    logger.info(f"- relwd={relwd} : {cmdline}")

    if path_override:
        executable = resolve_executable(argv[0], job.search_path)
    else:
        executable = resolve_executable(argv[0], job.host_env.get("PATH"))

    start = time.perf_counter()
    stdout, exit_code, error = await _execute(
        argv, executable, job.workspace / relwd, environ
    )
    duration = time.perf_counter() - start

    success = exit_code == 0
    output = sanitize_output(stdout)
    if not success and not output:
        output = f"<failure>\n{error}\n"
    rel = str(relwd)
    header = "$GOPATH" if rel in ("", ".") else os.path.join("$GOPATH", rel)
    return (
        f"{header} $ {cmdline}  (exit:{exit_code} in {format_duration(duration)})\n"
        f"{output}",
        success,
    )
