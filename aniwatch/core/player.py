import asyncio
import itertools
import json
import os
import shutil
import subprocess
import sys
import tempfile
import time
from typing import Any, List, Optional

from .errors import IPCError, LaunchFailure
from ..config import IPC_TIMEOUT, LIVENESS_PROBE_ATTEMPTS, LIVENESS_PROBE_INTERVAL, MPV_PATH
from ..utils.logger import get_logger

logger = get_logger(__name__)


def find_executable(name: str, configured: str = "") -> str:
    """Find executable from config, PATH or common Windows locations."""
    if configured:
        return configured

    # 1. Check PATH
    path = shutil.which(name)
    if path:
        return path

    # 2. Check current directory
    local_path = os.path.join(os.getcwd(), f"{name}.exe")
    if os.path.exists(local_path):
        return local_path

    # 3. Check common Windows paths
    fallbacks = []
    if name == "mpv":
        fallbacks = [
            r"C:\Program Files\mpv\mpv.exe",
            r"C:\mpv\mpv.exe"
        ]

    for fb in fallbacks:
        if os.path.exists(fb):
            return fb

    return name  # Return original name and let the launch report it


def make_ipc_path() -> str:
    stamp = f"{os.getpid()}_{int(time.time() * 1000)}"
    if sys.platform == "win32":
        return f"\\\\.\\pipe\\aniwatch_mpv_{stamp}"
    return os.path.join(tempfile.gettempdir(), f"aniwatch_mpv_{stamp}.sock")


class MpvIpcClient:
    """
    Request/response client for mpv's JSON IPC (--input-ipc-server).

    Each request opens its own connection, so the history and presence pollers
    can query the player independently without sharing a stream.
    """

    def __init__(self, path: str, timeout: float = IPC_TIMEOUT):
        self.path = path
        self.timeout = timeout
        self._request_ids = itertools.count(1)

    async def _open(self):
        if sys.platform == "win32":
            loop = asyncio.get_running_loop()
            reader = asyncio.StreamReader()
            protocol = asyncio.StreamReaderProtocol(reader)
            transport, _ = await loop.create_pipe_connection(lambda: protocol, self.path)
            writer = asyncio.StreamWriter(transport, protocol, reader, loop)
            return reader, writer
        return await asyncio.open_unix_connection(self.path)

    async def command(self, *args) -> Any:
        request_id = next(self._request_ids)
        payload = json.dumps({"command": list(args), "request_id": request_id}) + "\n"
        try:
            return await asyncio.wait_for(self._roundtrip(payload, request_id), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise IPCError(f"mpv did not answer {args[0]!r} within {self.timeout}s") from e
        except (OSError, ValueError) as e:
            raise IPCError(f"mpv IPC request {args[0]!r} failed: {e}") from e

    async def _roundtrip(self, payload: str, request_id: int) -> Any:
        reader, writer = await self._open()
        try:
            writer.write(payload.encode("utf-8"))
            await writer.drain()
            while True:
                line = await reader.readline()
                if not line:
                    raise IPCError("mpv closed the control socket")
                message = json.loads(line.decode("utf-8", errors="ignore"))
                if not isinstance(message, dict):
                    continue
                # Skip property-change and other event lines.
                if "event" in message or message.get("request_id") not in (None, request_id):
                    continue
                if message.get("error") != "success":
                    raise IPCError(f"mpv answered: {message.get('error')}")
                return message.get("data")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def get_property(self, name: str) -> Any:
        return await self.command("get_property", name)

    async def is_running(self) -> bool:
        """Liveness probe: any successful answer means mpv is accepting commands."""
        try:
            await self.get_property("mpv-version")
            return True
        except IPCError:
            return False


class PlayerHandle:
    """A running mpv process together with its control socket."""

    def __init__(self, process: asyncio.subprocess.Process, ipc: MpvIpcClient):
        self.process = process
        self.ipc = ipc

    @property
    def ipc_path(self) -> str:
        return self.ipc.path

    @property
    def exited(self) -> bool:
        return self.process.returncode is not None

    async def is_alive(self) -> bool:
        if self.exited:
            return False
        return await self.ipc.is_running()

    async def get_duration(self) -> Optional[float]:
        return _as_float(await self.ipc.get_property("duration"))

    async def get_position(self) -> Optional[float]:
        return _as_float(await self.ipc.get_property("time-pos"))

    async def is_paused(self) -> bool:
        return bool(await self.ipc.get_property("pause"))

    async def wait(self) -> int:
        returncode = await self.process.wait()
        self._cleanup_socket()
        return returncode

    async def terminate(self):
        if not self.exited:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            await self.process.wait()
        self._cleanup_socket()

    def _cleanup_socket(self):
        if sys.platform != "win32" and os.path.exists(self.ipc_path):
            try:
                os.remove(self.ipc_path)
            except OSError as e:
                logger.debug(f"Could not remove mpv socket {self.ipc_path}: {e}")


def _as_float(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class PlayerSupervisor:
    """Launches mpv and blocks until it answers on its control socket."""

    def __init__(self, executable: str = MPV_PATH,
                 probe_interval: float = LIVENESS_PROBE_INTERVAL,
                 probe_attempts: int = LIVENESS_PROBE_ATTEMPTS,
                 extra_args: Optional[List[str]] = None):
        self.executable = executable
        self.probe_interval = probe_interval
        self.probe_attempts = probe_attempts
        self.extra_args = list(extra_args or [])

    def build_command(self, exe: str, url: str, subtitle_url: Optional[str], title: str, ipc_path: str) -> List[str]:
        cmd = [
            exe,
            url,
            f"--input-ipc-server={ipc_path}",
            "--force-window=yes",
            f"--force-media-title={title}",
            f"--title={title}",
        ]
        if subtitle_url:
            cmd.append(f"--sub-file={subtitle_url}")
        cmd.extend(self.extra_args)
        return cmd

    async def launch(self, url: str, subtitle_url: Optional[str], title: str) -> PlayerHandle:
        exe = find_executable("mpv", self.executable)
        ipc_path = make_ipc_path()
        cmd = self.build_command(exe, url, subtitle_url, title, ipc_path)
        logger.info(f"Launching player: {title}")
        logger.debug(f"Player command: {cmd}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise LaunchFailure(f"Could not start '{exe}': {e}") from e

        handle = PlayerHandle(process, MpvIpcClient(ipc_path))
        if not await self.confirm_live(handle):
            await handle.terminate()
            raise LaunchFailure("mpv did not start or did not answer in time")
        logger.info(f"Player is live (pid {process.pid}, ipc {ipc_path})")
        return handle

    async def confirm_live(self, handle: PlayerHandle) -> bool:
        for attempt in range(self.probe_attempts):
            await asyncio.sleep(self.probe_interval)
            if handle.exited:
                logger.error(f"mpv exited during startup with code {handle.process.returncode}")
                return False
            if await handle.ipc.is_running():
                return True
            logger.debug(f"Waiting for mpv IPC ({attempt + 1}/{self.probe_attempts})")
        return False
