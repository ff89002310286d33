"""Supervision of the external ffmpeg process that decodes a stream to PCM."""
import asyncio
import inspect
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union
import numpy as np
from audioaware.audio.ingestion import PcmReassembler
from audioaware.core.config import settings
from audioaware.core.errors import ConfigurationError, DecodeProcessError
from audioaware.core.logging import logger


@dataclass(frozen=True)
class EndInfo:
    """How a decode process finished."""
    stopped: bool  # True when ended by stop()
    exit_code: Optional[int] = None
    signal: Optional[int] = None
    diagnostic_text: str = ""


SamplesHook = Callable[[np.ndarray], Union[None, Awaitable[None]]]
ErrorHook = Callable[[DecodeProcessError], Union[None, Awaitable[None]]]
EndHook = Callable[[EndInfo], Union[None, Awaitable[None]]]


def build_ffmpeg_command(input_url: str, sample_rate: int, ffmpeg_bin: Optional[str] = None) -> list[str]:
    """
    Build the ffmpeg argv that writes headerless mono s16le PCM to stdout.

    Args:
        input_url: Already resolved, decodable source URL
        sample_rate: Output sample rate in Hz
        ffmpeg_bin: ffmpeg executable (defaults to config value)

    Returns:
        Argument list suitable for create_subprocess_exec
    """
    return [
        ffmpeg_bin or settings.ffmpeg_bin,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        input_url,
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-f",
        "s16le",
        "pipe:1",
    ]


async def _call_hook(hook: Optional[Callable[..., Any]], *args) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


class DecodeProcess:
    """
    Runs a decoder subprocess and feeds its PCM output to a sample hook.

    A single reader task reads stdout, reassembles whole samples and awaits
    ``on_samples`` before reading the next chunk, so downstream consumers see
    audio strictly in arrival order. When the process finishes, exactly one
    ``on_end`` is delivered; failures additionally deliver one ``on_error``
    just before it. Nothing is retried here.
    """

    def __init__(
        self,
        input_url: str,
        sample_rate: Optional[int] = None,
        on_samples: Optional[SamplesHook] = None,
        on_error: Optional[ErrorHook] = None,
        on_end: Optional[EndHook] = None,
        command: Optional[list[str]] = None,
        stop_grace_sec: Optional[float] = None,
        read_chunk_bytes: Optional[int] = None,
        stderr_limit_bytes: Optional[int] = None
    ):
        """
        Initialize the decode process without spawning it.

        Args:
            input_url: Decodable source URL (required)
            sample_rate: Output sample rate (defaults to config value)
            on_samples: Called with each batch of int16 samples
            on_error: Called with a DecodeProcessError on failure
            on_end: Called once with EndInfo when the process is gone
            command: Full argv override, replaces the ffmpeg command
            stop_grace_sec: Seconds between SIGTERM and SIGKILL on stop()
        """
        if not input_url:
            raise ConfigurationError("input_url is required for the decode process")

        self.input_url = input_url
        self.sample_rate = sample_rate or settings.sample_rate
        self.command = command or build_ffmpeg_command(input_url, self.sample_rate)
        self.stop_grace_sec = settings.stop_grace_sec if stop_grace_sec is None else stop_grace_sec
        self.read_chunk_bytes = read_chunk_bytes or settings.read_chunk_bytes
        self.stderr_limit_bytes = stderr_limit_bytes or settings.stderr_limit_bytes

        self._on_samples = on_samples
        self._on_error = on_error
        self._on_end = on_end

        self._reassembler = PcmReassembler()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._terminate_task: Optional[asyncio.Task] = None
        self._spawn_finished = asyncio.Event()
        self._stderr = bytearray()
        self._started = False
        self._stopped = False
        self._handler_error: Optional[BaseException] = None
        self.end_info: Optional[EndInfo] = None

    @property
    def name(self) -> str:
        return os.path.basename(self.command[0])

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        """Exit status once the OS process is gone (negative for signals)."""
        return self._process.returncode if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self.end_info is None

    @property
    def diagnostic_text(self) -> str:
        return self._stderr.decode("utf-8", errors="replace").strip()

    async def start(self) -> "DecodeProcess":
        """Spawn the decoder. Spawn failures are reported through the hooks."""
        if self._started:
            return self
        self._started = True

        if self._stopped:
            await self._finish(EndInfo(stopped=True))
            return self

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            logger.error(f"Failed to start {self.name}: {e}")
            await self._notify(self._on_error, DecodeProcessError(f"Failed to start {self.name}: {e}"))
            await self._finish(EndInfo(stopped=False))
            return self
        finally:
            self._spawn_finished.set()

        logger.info(f"Started {self.name} (pid {self._process.pid}) at {self.sample_rate} Hz")
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        self._reader_task = asyncio.create_task(self._read_loop())

        # stop() arrived while the process was being spawned
        if self._stopped and self._terminate_task is None:
            self._terminate_task = asyncio.create_task(self._terminate())
        return self

    async def stop(self) -> None:
        """
        Stop the decoder. Safe to call repeatedly, before start, during spawn or after exit.

        Sends SIGTERM and escalates to SIGKILL after the grace period. The
        termination runs in its own task, so cancelling the caller does not
        leave the process alive.
        """
        first_stop = not self._stopped
        self._stopped = True
        if self._started and not self._spawn_finished.is_set():
            await self._spawn_finished.wait()
        if first_stop and self._process is not None and self.end_info is None and self._terminate_task is None:
            logger.info(f"Stopping {self.name} (pid {self._process.pid})")
            self._terminate_task = asyncio.create_task(self._terminate())

        if self._terminate_task is not None:
            await asyncio.shield(self._terminate_task)

    async def wait(self) -> Optional[EndInfo]:
        """Wait until the process has ended and all hooks have run."""
        if self._reader_task is not None:
            await self._reader_task
        return self.end_info

    async def _terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_grace_sec)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} did not exit within {self.stop_grace_sec}s, killing")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def _drain_stderr(self) -> None:
        while True:
            chunk = await self._process.stderr.read(self.read_chunk_bytes)
            if not chunk:
                break
            self._stderr.extend(chunk)
            overflow = len(self._stderr) - self.stderr_limit_bytes
            if overflow > 0:
                del self._stderr[:overflow]

    async def _read_loop(self) -> EndInfo:
        stdout = self._process.stdout
        while True:
            chunk = await stdout.read(self.read_chunk_bytes)
            if not chunk:
                break
            if self._stopped or self._handler_error is not None:
                continue
            samples = self._reassembler.feed(chunk)
            if samples.size == 0:
                continue
            try:
                await _call_hook(self._on_samples, samples)
            except Exception as e:
                logger.error(f"Sample handler failed for {self.name}: {e}", exc_info=True)
                self._handler_error = e
                self._terminate_task = asyncio.create_task(self._terminate())

        self._reassembler.flush()
        return_code = await self._process.wait()
        await self._stderr_task
        if self._terminate_task is not None:
            await self._terminate_task

        info = EndInfo(
            stopped=self._stopped,
            exit_code=return_code if return_code >= 0 else None,
            signal=-return_code if return_code < 0 else None,
            diagnostic_text=self.diagnostic_text
        )
        logger.info(
            f"{self.name} exited (code={info.exit_code}, signal={info.signal}, stopped={info.stopped})"
        )

        if not info.stopped:
            error = self._failure_for(info)
            if error is not None:
                await self._notify(self._on_error, error)
        await self._finish(info)
        return info

    def _failure_for(self, info: EndInfo) -> Optional[DecodeProcessError]:
        detail = f": {info.diagnostic_text}" if info.diagnostic_text else ""
        if self._handler_error is not None:
            return DecodeProcessError(
                f"Sample processing failed: {self._handler_error}",
                exit_code=info.exit_code,
                diagnostic_text=info.diagnostic_text
            )
        if info.signal is not None:
            return DecodeProcessError(
                f"{self.name} was terminated by signal {info.signal}{detail}",
                diagnostic_text=info.diagnostic_text
            )
        if info.exit_code != 0:
            return DecodeProcessError(
                f"{self.name} exited with code {info.exit_code}{detail}",
                exit_code=info.exit_code,
                diagnostic_text=info.diagnostic_text
            )
        return None

    async def _notify(self, hook: Optional[Callable[..., Any]], *args) -> None:
        # Lifecycle hooks run in the reader task, which nobody may be awaiting
        try:
            await _call_hook(hook, *args)
        except Exception as e:
            logger.error(f"{getattr(hook, '__name__', 'hook')} failed for {self.name}: {e}", exc_info=True)

    async def _finish(self, info: EndInfo) -> None:
        self.end_info = info
        await self._notify(self._on_end, info)


async def start_decode_stream(input_url: str, **kwargs) -> DecodeProcess:
    """
    Create and start a DecodeProcess.

    Args:
        input_url: Decodable source URL
        **kwargs: Forwarded to DecodeProcess

    Returns:
        The running process handle; call ``stop()`` to end it
    """
    process = DecodeProcess(input_url, **kwargs)
    return await process.start()
