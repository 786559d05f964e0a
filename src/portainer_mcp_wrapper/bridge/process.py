"""portainer_mcp_wrapper.bridge.process

Gestion du cycle de vie du sous-processus MCP (portainer-mcp en stdio).

Règles:
- Un seul écrivain sur stdin (verrou asyncio: encode+write+drain atomique)
- Un seul lecteur sur stdout (le bridge); une seconde lecture concurrente est une erreur
- stderr est drainé en continu dans une tâche séparée -> logging
  (un stderr plein ne doit jamais bloquer stdout)
- Fin de process toujours observée (`wait()`), pas de handle zombie

Le lanceur est injectable (`launcher`) pour tester le bridge avec un faux
process en mémoire, sans lancer de binaire.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from ..core.constants import (
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_SHUTDOWN_GRACE,
    DEFAULT_STDIO_STREAM_LIMIT,
    SECRET_FLAGS,
    VALUE_FLAGS,
)
from ..core.exceptions import BridgeIOError, DecodeError, LaunchError
from ..core.models import ExitStatus, SubprocessState

logger = logging.getLogger(__name__)
stderr_logger = logging.getLogger("portainer_mcp_wrapper.subprocess")

Launcher = Callable[..., Awaitable[Any]]


def redact_args(args: Iterable[str]) -> list[str]:
    """Masque les valeurs des flags secrets (pour les logs)."""
    redacted: list[str] = []
    hide_next = False
    for arg in args:
        if hide_next:
            redacted.append("***")
            hide_next = False
            continue
        redacted.append(arg)
        hide_next = arg in SECRET_FLAGS
    return redacted


def validate_launch_args(executable: str, args: Sequence[str]) -> None:
    """Valide l'exécutable et le vecteur d'arguments avant le spawn.

    Raises:
        LaunchError: chemin vide, argument non-str/NUL, paire flag/valeur cassée
    """

    if not isinstance(executable, str) or not executable.strip():
        raise LaunchError("chemin de l'exécutable non défini")
    if "\x00" in executable:
        raise LaunchError("chemin de l'exécutable invalide (NUL)", executable=executable)
    if isinstance(args, (str, bytes)) or not isinstance(args, Sequence):
        raise LaunchError("liste d'arguments attendue", executable=executable)

    for index, arg in enumerate(args):
        if not isinstance(arg, str):
            raise LaunchError(f"argument #{index} non textuel", executable=executable)
        if "\x00" in arg:
            raise LaunchError(f"argument #{index} invalide (NUL)", executable=executable)
        if arg in VALUE_FLAGS:
            value = args[index + 1] if index + 1 < len(args) else None
            if not value or value.startswith("--"):
                raise LaunchError(f"valeur manquante pour {arg}", executable=executable)


class SubprocessHandle:
    """Référence vivante vers un sous-processus et ses flux stdio."""

    def __init__(
        self,
        process: Any,
        *,
        executable: str,
        args: Sequence[str],
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        stream_limit: int = DEFAULT_STDIO_STREAM_LIMIT,
    ) -> None:
        self._process = process
        self.pid: int = process.pid
        self.executable = executable
        # Immuable après le spawn
        self.args: tuple[str, ...] = tuple(args)
        self.state = SubprocessState.STARTING

        self._shutdown_grace = shutdown_grace
        self._kill_timeout = kill_timeout
        self._stream_limit = stream_limit

        self._write_lock = asyncio.Lock()
        self._reading = False
        self._signaled = False
        self._exit_status: Optional[ExitStatus] = None
        self._terminate_task: Optional[asyncio.Task[ExitStatus]] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None

        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr())
        if process.returncode is None:
            self.state = SubprocessState.RUNNING

    def __repr__(self) -> str:
        return f"<SubprocessHandle pid={self.pid} state={self.state.value}>"

    @property
    def running(self) -> bool:
        return self.state == SubprocessState.RUNNING and self._process.returncode is None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def exit_status(self) -> Optional[ExitStatus]:
        return self._exit_status

    async def write_line(self, data: bytes) -> None:
        """Écrit une ligne complète sur stdin (sérialisé par verrou).

        Raises:
            BridgeIOError: stdin fermé ou process terminé
        """

        if not data.endswith(b"\n") or data.count(b"\n") != 1:
            raise ValueError("write_line attend exactement une ligne terminée par \\n")

        async with self._write_lock:
            stdin = self._process.stdin
            if not self.running or stdin is None or stdin.is_closing():
                raise BridgeIOError("stdin du sous-processus fermé", pid=self.pid)
            try:
                stdin.write(data)
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise BridgeIOError(f"écriture stdin impossible: {e}", pid=self.pid) from e

    async def read_line(self) -> Optional[bytes]:
        """Lit la prochaine ligne stdout complète.

        Returns:
            La ligne (avec `\\n`), ou None à EOF (process terminé / stdout fermé).

        Raises:
            DecodeError: ligne plus longue que la limite du stream (ligne perdue)
            BridgeIOError: erreur de lecture du pipe
        """

        if self._reading:
            raise RuntimeError("lecture stdout concurrente interdite (un seul lecteur)")

        stdout = self._process.stdout
        if stdout is None:
            return None

        self._reading = True
        try:
            line = await stdout.readline()
        except ValueError as e:
            # "Separator is not found, and chunk exceed the limit"
            raise DecodeError(
                f"ligne stdout > {self._stream_limit} octets (MCP_STDIO_STREAM_LIMIT)",
                offset=self._stream_limit,
            ) from e
        except (ConnectionResetError, OSError) as e:
            raise BridgeIOError(f"lecture stdout impossible: {e}", pid=self.pid) from e
        finally:
            self._reading = False

        if not line:
            return None
        return line

    async def wait(self) -> ExitStatus:
        """Attend la fin du process (awaitExit)."""

        if self._exit_status is not None:
            return self._exit_status

        returncode = await self._process.wait()
        if self._exit_status is None:
            signaled = self._signaled or (returncode is not None and returncode < 0)
            self._exit_status = ExitStatus(returncode=returncode, signaled=signaled)
            if returncode == 0 or self._terminate_task is not None:
                self.state = SubprocessState.EXITED
            else:
                self.state = SubprocessState.FAILED
            logger.info(
                "Sous-processus pid=%s terminé (code=%s, signal=%s)",
                self.pid, returncode, signaled,
            )
            await self._finish_stderr()
        return self._exit_status

    async def terminate(self) -> ExitStatus:
        """Arrêt gracieux: ferme stdin, attend, puis SIGTERM puis SIGKILL.

        Idempotent: les appels suivants attendent le même arrêt.
        """

        if self._terminate_task is None:
            self._terminate_task = asyncio.create_task(self._terminate())
        return await asyncio.shield(self._terminate_task)

    async def _terminate(self) -> ExitStatus:
        if self._process.returncode is not None:
            return await self.wait()

        self._close_stdin()
        try:
            return await asyncio.wait_for(self.wait(), timeout=self._shutdown_grace)
        except asyncio.TimeoutError:
            pass

        logger.warning("Sous-processus pid=%s toujours vivant après %.1fs: SIGTERM", self.pid, self._shutdown_grace)
        self._signaled = True
        self._send_signal(self._process.terminate)
        try:
            return await asyncio.wait_for(self.wait(), timeout=self._kill_timeout)
        except asyncio.TimeoutError:
            pass

        logger.error("Sous-processus pid=%s ignore SIGTERM: SIGKILL", self.pid)
        self._send_signal(self._process.kill)
        return await self.wait()

    def _close_stdin(self) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return
        try:
            stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("Fermeture stdin pid=%s: %s", self.pid, e)

    @staticmethod
    def _send_signal(send: Callable[[], None]) -> None:
        try:
            send()
        except ProcessLookupError:
            pass

    async def _drain_stderr(self) -> None:
        stream = self._process.stderr
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                stderr_logger.warning("[pid=%s] ligne stderr tronquée (trop longue)", self.pid)
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                stderr_logger.warning("[pid=%s] %s", self.pid, text)

    async def _finish_stderr(self) -> None:
        # Laisse stderr se vider (EOF). Ne cancel qu'en dernier recours.
        task = self._stderr_task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=1.0)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class SubprocessManager:
    """Lance et suit les sous-processus MCP."""

    def __init__(
        self,
        *,
        stream_limit: int = DEFAULT_STDIO_STREAM_LIMIT,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        env: Optional[dict[str, str]] = None,
        launcher: Optional[Launcher] = None,
    ) -> None:
        self._stream_limit = stream_limit
        self._shutdown_grace = shutdown_grace
        self._kill_timeout = kill_timeout
        self._env = env
        self._launcher = launcher or asyncio.create_subprocess_exec
        self._handles: set[SubprocessHandle] = set()

    @property
    def handles(self) -> frozenset[SubprocessHandle]:
        return frozenset(self._handles)

    async def spawn(self, executable: str, args: Sequence[str]) -> SubprocessHandle:
        """Lance le sous-processus avec stdin/stdout/stderr capturés.

        Raises:
            LaunchError: arguments invalides, binaire absent, permission refusée
        """

        validate_launch_args(executable, args)
        try:
            process = await self._launcher(
                executable,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self._stream_limit,
                env=self._env,
            )
        except FileNotFoundError as e:
            raise LaunchError("exécutable introuvable", executable=executable) from e
        except PermissionError as e:
            raise LaunchError("permission refusée", executable=executable) from e
        except OSError as e:
            raise LaunchError(str(e), executable=executable) from e

        handle = SubprocessHandle(
            process,
            executable=executable,
            args=args,
            shutdown_grace=self._shutdown_grace,
            kill_timeout=self._kill_timeout,
            stream_limit=self._stream_limit,
        )
        self._handles.add(handle)
        logger.info("🚀 Sous-processus démarré pid=%s: %s %s", handle.pid, executable, " ".join(redact_args(args)))
        return handle

    async def terminate(self, handle: SubprocessHandle) -> ExitStatus:
        """Arrête un handle (idempotent) et l'oublie."""
        try:
            return await handle.terminate()
        finally:
            self._handles.discard(handle)

    def forget(self, handle: SubprocessHandle) -> None:
        """Oublie un handle dont la fin a déjà été observée."""
        self._handles.discard(handle)

    async def terminate_all(self) -> None:
        """Arrête tous les sous-processus encore suivis (arrêt global)."""
        handles = list(self._handles)
        if not handles:
            return
        results = await asyncio.gather(*(self.terminate(h) for h in handles), return_exceptions=True)
        for handle, result in zip(handles, results):
            if isinstance(result, BaseException):
                logger.error("Arrêt du sous-processus pid=%s en échec: %s", handle.pid, result)
