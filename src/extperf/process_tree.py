"""Process tree discovery for extperf."""

import psutil
import structlog

from extperf.models import ProcessSample

log = structlog.get_logger()


def resolve_command_line(proc: psutil.Process) -> str:
    """Best available command line for a process: argv, then exe, then name."""
    try:
        cmdline = proc.cmdline()
    except (psutil.AccessDenied, psutil.ZombieProcess):
        cmdline = []
    if cmdline:
        return " ".join(cmdline)

    for getter in (proc.exe, proc.name):
        try:
            value = getter()
        except (psutil.AccessDenied, psutil.ZombieProcess):
            continue
        if value:
            return value
    return ""


class ProcessTreeWalker:
    """
    Enumerate every descendant of a root process.

    The walk is depth-first and iterative, so it is bounded only by the
    number of descendants. Each pid is visited at most once even if the OS
    listing races and reports a process under two parents.
    """

    def __init__(self, process_factory=psutil.Process) -> None:
        self._process_factory = process_factory

    def walk(self, root_pid: int) -> list[ProcessSample]:
        """
        Return the descendants of root_pid in depth-first order.

        The root itself is not included. If the root exits mid-walk the
        subtree collected so far is returned. If the listing primitive
        fails outright the error is logged and the result is empty.
        """
        samples: list[ProcessSample] = []
        visited: set[int] = {root_pid}

        try:
            stack: list[tuple[psutil.Process, int | None]] = [
                (self._process_factory(root_pid), None)
            ]
            while stack:
                proc, parent_pid = stack.pop()

                if parent_pid is not None:
                    try:
                        command_line = resolve_command_line(proc)
                    except psutil.NoSuchProcess:
                        # Exited between listing and inspection
                        continue
                    samples.append(
                        ProcessSample(
                            pid=proc.pid,
                            parent_pid=parent_pid,
                            command_line=command_line,
                        )
                    )

                try:
                    children = proc.children(recursive=False)
                except (psutil.NoSuchProcess, psutil.ZombieProcess, psutil.AccessDenied):
                    if parent_pid is None:
                        raise
                    continue

                # Reversed so the first child is visited first
                for child in reversed(children):
                    if child.pid in visited:
                        continue
                    visited.add(child.pid)
                    stack.append((child, proc.pid))

        except psutil.NoSuchProcess:
            log.debug("walk_root_gone", root_pid=root_pid, collected=len(samples))
            return samples
        except Exception as exc:
            log.warning("walk_failed", root_pid=root_pid, error=str(exc))
            return []

        return samples
