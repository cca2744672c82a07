# orchestration_engine/launcher/subprocess_launcher.py
"""Launcher that runs module executables as local OS processes."""

import logging
import os
import signal
import subprocess
import sys
from threading import Lock
from typing import Dict, List, Optional

from orchestration_engine.core.errors import LaunchError
from orchestration_engine.launcher.base import ProcessHandle, ProcessLauncher

logger = logging.getLogger(__name__)

# Exposed to the module process so it can size its own work
THREAD_COUNT_ENV = "ORCH_MODULE_THREADS"


class SubprocessLauncher(ProcessLauncher):
    """
    Runs executables on the local node only.

    Python files are started with the current interpreter; anything else is
    executed directly.
    """

    def __init__(self, node_id: str, terminate_timeout: float = 5.0):
        self.node_id = node_id
        self.terminate_timeout = terminate_timeout
        self._processes: Dict[int, subprocess.Popen] = {}
        self._lock = Lock()

    def _command(self, executable_path: str, args: tuple) -> List[str]:
        if executable_path.endswith(".py"):
            return [sys.executable, executable_path, *args]
        return [executable_path, *args]

    def _spawn(self, executable_path: str, thread_count: int, args: tuple) -> subprocess.Popen:
        if not os.path.exists(executable_path):
            raise LaunchError(f"Executable not found: {executable_path}")

        env = dict(os.environ)
        env[THREAD_COUNT_ENV] = str(thread_count)
        try:
            return subprocess.Popen(self._command(executable_path, args), env=env)
        except OSError as e:
            raise LaunchError(f"Failed to start {executable_path}: {e}") from e

    def start(
        self,
        executable_path: str,
        node_id: str,
        thread_count: int,
        *args: str,
    ) -> Optional[ProcessHandle]:
        if node_id != self.node_id:
            logger.error(f"[launcher] Cannot launch on '{node_id}' - this launcher only manages '{self.node_id}'")
            return None

        try:
            process = self._spawn(executable_path, thread_count, args)
        except LaunchError as e:
            logger.error(f"[launcher] {e}")
            return None

        with self._lock:
            self._processes[process.pid] = process

        handle = ProcessHandle(node_id=self.node_id, pid=process.pid)
        logger.info(f"[launcher] Started {executable_path} as {handle}")
        return handle

    def is_running(self, handle: ProcessHandle) -> bool:
        if handle.node_id != self.node_id:
            return False

        with self._lock:
            process = self._processes.get(handle.pid)
        if process is not None:
            return process.poll() is None

        # Started by an earlier daemon run; probe the pid directly
        try:
            os.kill(handle.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def terminate(self, handle: ProcessHandle) -> bool:
        if handle.node_id != self.node_id:
            return False

        with self._lock:
            process = self._processes.pop(handle.pid, None)

        if process is None:
            if not self.is_running(handle):
                return True
            try:
                os.kill(handle.pid, signal.SIGTERM)
            except ProcessLookupError:
                return True
            except PermissionError as e:
                logger.error(f"[launcher] Cannot terminate {handle}: {e}")
                return False
            return True

        if process.poll() is not None:
            return True

        process.terminate()
        try:
            process.wait(timeout=self.terminate_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"[launcher] {handle} ignored SIGTERM, killing")
            process.kill()
            process.wait()

        logger.info(f"[launcher] Terminated {handle}")
        return True
