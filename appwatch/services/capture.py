"""Bounded capture of console output, HTTP traffic, errors, user actions
and terminal text.

The engine owns one ring buffer per channel. ``enable()`` wraps
``builtins.print``, adds a handler to the root logger, wraps the ``httpx``
client ``send`` methods and chains the process exception hooks; every
wrapper keeps a reference to what it replaced so ``disable()`` can put it
back. Hooks are observational: the wrapped call always runs and its result
or exception is passed through untouched.
"""

from __future__ import annotations

import asyncio
import builtins
import copy
import functools
import json
import logging
import os
import platform
import shutil
import socket
import sys
import threading
import time
import traceback
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx

from ..store import KeyValueStore, StorageError
from .ring_buffer import DEFAULT_CAPACITY, RingBuffer

logger = logging.getLogger(__name__)

_MODULE_LOADED = time.monotonic()

DEBUG_CONFIG_KEY = "debug_config"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _safe_str(value: Any) -> str:
    try:
        return value if isinstance(value, str) else str(value)
    except Exception:
        return object.__repr__(value)


def _detached(data: dict[str, Any] | None) -> dict[str, Any]:
    """Deep copy of caller-owned metadata taken at capture time."""
    if not data:
        return {}
    try:
        return copy.deepcopy(dict(data))
    except Exception:
        # Values that cannot be copied are kept as their string form
        return {key: _safe_str(value) for key, value in data.items()}


# --- Captured events -------------------------------------------------------


@dataclass(frozen=True)
class ConsoleEvent:
    level: str
    args: tuple[str, ...]
    timestamp: str = field(default_factory=_now)

    @property
    def message(self) -> str:
        return " ".join(self.args)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "args": list(self.args),
            "message": self.message,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class NetworkEvent:
    method: str
    url: str
    status: int
    duration_ms: float
    size_bytes: int
    timestamp: str = field(default_factory=_now)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "method": self.method,
            "url": self.url,
            "status": self.status,
            "durationMs": self.duration_ms,
            "sizeBytes": self.size_bytes,
            "timestamp": self.timestamp,
        }
        if self.error:
            d["error"] = self.error
        return d


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    stack: str = ""
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "stack": self.stack,
            "context": dict(self.context),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class UserActionEvent:
    action: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "metadata": dict(self.metadata), "timestamp": self.timestamp}


@dataclass(frozen=True)
class TerminalEvent:
    text: str
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "timestamp": self.timestamp}


@dataclass(frozen=True)
class DebugConfig:
    enabled: bool = True
    capture_console: bool = True
    capture_network: bool = True
    capture_errors: bool = True
    terminal_debounce_ms: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "captureConsole": self.capture_console,
            "captureNetwork": self.capture_network,
            "captureErrors": self.capture_errors,
            "terminalDebounceMs": self.terminal_debounce_ms,
        }


_CONFIG_FIELDS = frozenset(f.name for f in fields(DebugConfig))


@dataclass(frozen=True)
class DebugSnapshot:
    logs: tuple[ConsoleEvent, ...]
    errors: tuple[ErrorEvent, ...]
    network_requests: tuple[NetworkEvent, ...]
    user_actions: tuple[UserActionEvent, ...]
    terminal_logs: tuple[TerminalEvent, ...]
    system_info: dict[str, Any]
    performance: dict[str, Any]
    generated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "logs": [e.to_dict() for e in self.logs],
            "errors": [e.to_dict() for e in self.errors],
            "networkRequests": [e.to_dict() for e in self.network_requests],
            "userActions": [e.to_dict() for e in self.user_actions],
            "terminalLogs": [e.to_dict() for e in self.terminal_logs],
            "systemInfo": json.loads(json.dumps(self.system_info)),
            "performance": json.loads(json.dumps(self.performance)),
            "generatedAt": self.generated_at,
        }


# --- Hooks -----------------------------------------------------------------


class _CaptureHandler(logging.Handler):
    """Root logger handler feeding the console buffer."""

    def __init__(self, engine: CaptureEngine) -> None:
        super().__init__(level=logging.NOTSET)
        self._engine = engine

    def emit(self, record: logging.LogRecord) -> None:
        # The engine's own diagnostics are never captured
        if record.name == __name__:
            return
        try:
            message = record.getMessage()
        except Exception:
            message = _safe_str(record.msg)
        self._engine._record_console(record.levelname.lower(), (message,))


def _response_size(response: httpx.Response) -> int:
    length = response.headers.get("content-length", "")
    if length.isdigit():
        return int(length)
    try:
        return len(response.content)
    except httpx.ResponseNotRead:
        return 0


class CaptureEngine:
    """Owns the capture buffers and the interception hooks feeding them.

    Create one engine per application and pass it around; nothing here is a
    module-level singleton.
    """

    def __init__(
        self,
        config: DebugConfig | None = None,
        *,
        capacity: int = DEFAULT_CAPACITY,
        kv: KeyValueStore | None = None,
        export_dir: Path | None = None,
    ) -> None:
        self.logs: RingBuffer[ConsoleEvent] = RingBuffer(capacity)
        self.errors: RingBuffer[ErrorEvent] = RingBuffer(capacity)
        self.network_requests: RingBuffer[NetworkEvent] = RingBuffer(capacity)
        self.user_actions: RingBuffer[UserActionEvent] = RingBuffer(capacity)
        self.terminal_logs: RingBuffer[TerminalEvent] = RingBuffer(capacity)

        self.export_dir = export_dir
        self._kv = kv
        self._config = self._load_config() or config or DebugConfig()

        self._installed = False
        self._originals: dict[str, Any] = {}
        self._wrappers: dict[str, Any] = {}
        self._log_handler: _CaptureHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

        self._pending_terminal: TerminalEvent | None = None
        self._terminal_task: asyncio.Task | None = None

        self._enabled_at: float | None = None
        self._first_capture_at: float | None = None

    # --- Lifecycle ---------------------------------------------------------

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def config(self) -> DebugConfig:
        return self._config

    def enable(self) -> None:
        """Install every interception hook. Calling it again is a no-op."""
        if self._installed:
            return
        self._installed = True
        self._enabled_at = time.monotonic()
        self._first_capture_at = None
        for install in (
            self._install_console,
            self._install_network,
            self._install_errors,
            self._install_loop_handler,
        ):
            try:
                install()
            except Exception:
                logger.debug("Capture hook %s unavailable", install.__name__, exc_info=True)
        logger.info("Capture enabled (hooks: %s)", ", ".join(sorted(self._wrappers)) or "none")

    def disable(self) -> None:
        """Remove the hooks and restore the originals they replaced."""
        if not self._installed:
            return
        self._installed = False
        self.flush_terminal()

        self._restore(builtins, "print")
        self._restore(httpx.Client, "send")
        self._restore(httpx.AsyncClient, "send")
        self._restore(sys, "excepthook")
        self._restore(threading, "excepthook")

        if self._log_handler is not None:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler = None

        loop = self._loop
        if loop is not None and not loop.is_closed():
            if loop.get_exception_handler() is self._wrappers.get("loop_handler"):
                loop.set_exception_handler(self._originals.get("loop_handler"))
        self._loop = None

        self._originals.clear()
        self._wrappers.clear()
        logger.info("Capture disabled")

    def _restore(self, target: Any, name: str) -> None:
        key = f"{getattr(target, '__name__', target)}.{name}"
        if key not in self._wrappers:
            return
        # Leave a hook installed later by someone else in place; our wrapper
        # underneath it passes straight through once disabled.
        if getattr(target, name) is self._wrappers[key]:
            setattr(target, name, self._originals[key])
        else:
            logger.debug("%s was replaced after capture was enabled, not restoring", key)

    def _install(self, target: Any, name: str, wrapper: Any) -> None:
        key = f"{getattr(target, '__name__', target)}.{name}"
        self._originals[key] = getattr(target, name)
        self._wrappers[key] = wrapper
        setattr(target, name, wrapper)

    def update_config(self, **partial: Any) -> DebugConfig:
        """Merge *partial* into the live config. Takes effect on the next event."""
        unknown = set(partial) - _CONFIG_FIELDS
        if unknown:
            raise ValueError(f"Unknown debug config keys: {', '.join(sorted(unknown))}")
        self._config = replace(self._config, **partial)
        self._persist_config()
        return self._config

    def _load_config(self) -> DebugConfig | None:
        if self._kv is None:
            return None
        try:
            data = self._kv.get(DEBUG_CONFIG_KEY)
        except StorageError:
            logger.warning("Debug config store unavailable, keeping config in memory", exc_info=True)
            self._kv = None
            return None
        if not isinstance(data, dict):
            return None
        return DebugConfig(**{k: v for k, v in data.items() if k in _CONFIG_FIELDS})

    def _persist_config(self) -> None:
        if self._kv is None:
            return
        try:
            self._kv.set(DEBUG_CONFIG_KEY, asdict(self._config))
        except StorageError:
            logger.warning("Debug config store unavailable, keeping config in memory", exc_info=True)
            self._kv = None

    # --- Console -----------------------------------------------------------

    def _install_console(self) -> None:
        original_print = builtins.print
        engine = self

        @functools.wraps(original_print)
        def captured_print(*args: Any, **kwargs: Any) -> None:
            if engine._installed:
                level = "error" if kwargs.get("file") is sys.stderr else "log"
                engine._record_console(level, tuple(_safe_str(a) for a in args))
            original_print(*args, **kwargs)

        self._install(builtins, "print", captured_print)

        handler = _CaptureHandler(self)
        logging.getLogger().addHandler(handler)
        self._log_handler = handler

    def _record_console(self, level: str, args: tuple[str, ...]) -> None:
        cfg = self._config
        if not (self._installed and cfg.enabled and cfg.capture_console):
            return
        self.logs.push(ConsoleEvent(level=level, args=args))
        self._mark_capture()

    # --- Network -----------------------------------------------------------

    def _install_network(self) -> None:
        original_send = httpx.Client.send
        original_async_send = httpx.AsyncClient.send
        engine = self

        @functools.wraps(original_send)
        def send(client: httpx.Client, request: httpx.Request, **kwargs: Any) -> httpx.Response:
            if not engine._capturing_network():
                return original_send(client, request, **kwargs)
            start = time.perf_counter()
            try:
                response = original_send(client, request, **kwargs)
            except BaseException as e:
                engine._record_network(request, start, error=e)
                raise
            engine._record_network(request, start, response=response)
            return response

        @functools.wraps(original_async_send)
        async def async_send(
            client: httpx.AsyncClient, request: httpx.Request, **kwargs: Any
        ) -> httpx.Response:
            if not engine._capturing_network():
                return await original_async_send(client, request, **kwargs)
            start = time.perf_counter()
            try:
                response = await original_async_send(client, request, **kwargs)
            except BaseException as e:
                engine._record_network(request, start, error=e)
                raise
            engine._record_network(request, start, response=response)
            return response

        self._install(httpx.Client, "send", send)
        self._install(httpx.AsyncClient, "send", async_send)

    def _capturing_network(self) -> bool:
        cfg = self._config
        return self._installed and cfg.enabled and cfg.capture_network

    def _record_network(
        self,
        request: httpx.Request,
        start: float,
        *,
        response: httpx.Response | None = None,
        error: BaseException | None = None,
    ) -> None:
        try:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            if response is not None:
                event = NetworkEvent(
                    method=request.method,
                    url=str(request.url),
                    status=response.status_code,
                    duration_ms=duration_ms,
                    size_bytes=_response_size(response),
                )
            else:
                event = NetworkEvent(
                    method=request.method,
                    url=str(request.url),
                    status=0,
                    duration_ms=duration_ms,
                    size_bytes=0,
                    error=_safe_str(error) or type(error).__name__,
                )
            self.network_requests.push(event)
            self._mark_capture()
        except Exception:
            logger.debug("Failed to record network event", exc_info=True)

    # --- Errors ------------------------------------------------------------

    def _install_errors(self) -> None:
        previous_excepthook = sys.excepthook
        previous_thread_hook = threading.excepthook
        engine = self

        def excepthook(exc_type, exc, tb) -> None:
            if engine._installed:
                engine._record_exception(exc_type, exc, tb, {"source": "sys.excepthook"})
            previous_excepthook(exc_type, exc, tb)

        def thread_excepthook(args) -> None:
            if engine._installed:
                context = {"source": "threading.excepthook"}
                if args.thread is not None:
                    context["thread"] = args.thread.name
                engine._record_exception(args.exc_type, args.exc_value, args.exc_traceback, context)
            previous_thread_hook(args)

        self._install(sys, "excepthook", excepthook)
        self._install(threading, "excepthook", thread_excepthook)

    def _install_loop_handler(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, unhandled task errors are not captured")
            return
        previous = loop.get_exception_handler()
        engine = self

        def loop_exception_handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
            if engine._installed:
                exc = context.get("exception")
                extra = {"source": "asyncio"}
                if context.get("message"):
                    extra["message"] = _safe_str(context["message"])
                if isinstance(exc, BaseException):
                    engine._record_exception(type(exc), exc, exc.__traceback__, extra)
                else:
                    engine._record_error(_safe_str(context.get("message", "Unhandled asyncio error")), "", extra)
            if previous is not None:
                previous(loop, context)
            else:
                loop.default_exception_handler(context)

        self._originals["loop_handler"] = previous
        self._wrappers["loop_handler"] = loop_exception_handler
        loop.set_exception_handler(loop_exception_handler)
        self._loop = loop

    def _record_exception(self, exc_type, exc, tb, context: dict[str, Any]) -> None:
        try:
            message = f"{exc_type.__name__}: {_safe_str(exc)}"
            stack = "".join(traceback.format_exception(exc_type, exc, tb))
        except Exception:
            message, stack = _safe_str(exc), ""
        self._record_error(message, stack, context)

    def _record_error(self, message: str, stack: str, context: dict[str, Any]) -> None:
        cfg = self._config
        if not (cfg.enabled and cfg.capture_errors):
            return
        self.errors.push(ErrorEvent(message=message, stack=stack, context=_detached(context)))
        self._mark_capture()

    # --- Explicit capture API ----------------------------------------------

    def capture_error(self, error: BaseException | str, context: dict[str, Any] | None = None) -> None:
        """Record a caught exception or an error message."""
        if isinstance(error, BaseException):
            self._record_exception(type(error), error, error.__traceback__, context or {})
        else:
            self._record_error(error, "", context or {})

    def capture_user_action(self, action: str, metadata: dict[str, Any] | None = None) -> None:
        if not self._config.enabled:
            return
        self.user_actions.push(UserActionEvent(action=action, metadata=_detached(metadata)))
        self._mark_capture()

    def capture_terminal_log(self, text: str) -> None:
        """Buffer terminal text, coalescing bursts.

        Calls less than ``terminal_debounce_ms`` apart replace each other;
        only the last text is pushed once the stream has been quiet for the
        whole window. Without a running event loop the text is pushed
        immediately.
        """
        if not self._config.enabled:
            return
        self._pending_terminal = TerminalEvent(text=text)
        if self._terminal_task is not None and not self._terminal_task.done():
            self._terminal_task.cancel()
        self._terminal_task = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush_terminal()
            return
        delay = max(self._config.terminal_debounce_ms, 0) / 1000
        self._terminal_task = loop.create_task(self._flush_terminal_later(delay))

    async def _flush_terminal_later(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self._terminal_task = None
        self.flush_terminal()

    def flush_terminal(self) -> None:
        """Push any pending terminal text now and cancel its timer."""
        task, self._terminal_task = self._terminal_task, None
        if task is not None and not task.done():
            task.cancel()
        pending, self._pending_terminal = self._pending_terminal, None
        if pending is not None:
            self.terminal_logs.push(pending)
            self._mark_capture()

    def _mark_capture(self) -> None:
        if self._first_capture_at is None:
            self._first_capture_at = time.monotonic()

    # --- Snapshot / export -------------------------------------------------

    def get_debug_log(self) -> DebugSnapshot:
        """Point-in-time copy of every buffer plus environment metadata."""
        return DebugSnapshot(
            logs=tuple(self.logs.to_list()),
            errors=tuple(self.errors.to_list()),
            network_requests=tuple(self.network_requests.to_list()),
            user_actions=tuple(self.user_actions.to_list()),
            terminal_logs=tuple(self.terminal_logs.to_list()),
            system_info=collect_system_info(),
            performance=self._performance(),
            generated_at=_now(),
        )

    def _performance(self) -> dict[str, Any]:
        now = time.monotonic()
        perf: dict[str, Any] = {
            "loadTimeMs": round((now - _MODULE_LOADED) * 1000, 1),
            "engineUptimeMs": None,
            "firstCaptureMs": None,
            "bufferUsage": {
                "logs": len(self.logs),
                "errors": len(self.errors),
                "networkRequests": len(self.network_requests),
                "userActions": len(self.user_actions),
                "terminalLogs": len(self.terminal_logs),
                "capacity": self.logs.capacity,
            },
        }
        if self._enabled_at is not None:
            perf["engineUptimeMs"] = round((now - self._enabled_at) * 1000, 1)
            if self._first_capture_at is not None:
                perf["firstCaptureMs"] = round((self._first_capture_at - self._enabled_at) * 1000, 1)
        rss = _max_rss_bytes()
        if rss is not None:
            perf["memory"] = {"maxRssBytes": rss}
        return perf

    def download_debug_log(
        self, filename: str | None = None, directory: Path | None = None
    ) -> tuple[Path, Path]:
        """Write the current snapshot as ``<name>.json`` and ``<name>.txt``.

        Serialization and filesystem errors propagate to the caller.
        """
        snapshot = self.get_debug_log()
        data, text = serialize_snapshot(snapshot)

        if filename:
            stem = Path(filename).stem
        else:
            stem = "debug-log-" + datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        target = directory or self.export_dir or Path.cwd()
        target.mkdir(parents=True, exist_ok=True)

        json_path = target / f"{stem}.json"
        text_path = target / f"{stem}.txt"
        json_path.write_text(data)
        text_path.write_text(text)
        logger.info("Debug log exported to %s", json_path)
        return json_path, text_path

    def clear(self) -> None:
        """Drop everything captured so far."""
        task, self._terminal_task = self._terminal_task, None
        if task is not None and not task.done():
            task.cancel()
        self._pending_terminal = None
        for buffer in (self.logs, self.errors, self.network_requests, self.user_actions, self.terminal_logs):
            buffer.clear()


# --- Environment -----------------------------------------------------------


def collect_system_info() -> dict[str, Any]:
    size = shutil.get_terminal_size(fallback=(80, 24))
    now = datetime.now().astimezone()
    offset = now.utcoffset()
    return {
        "platform": platform.platform(),
        "system": platform.system(),
        "machine": platform.machine(),
        "pythonVersion": platform.python_version(),
        "implementation": platform.python_implementation(),
        "hostname": socket.gethostname(),
        "pid": os.getpid(),
        "timezone": now.tzname(),
        "utcOffsetMinutes": int(offset.total_seconds() // 60) if offset is not None else 0,
        "viewport": {"columns": size.columns, "lines": size.lines},
    }


def _max_rss_bytes() -> int | None:
    try:
        import resource
    except ImportError:  # not available on Windows
        return None
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports kilobytes, macOS bytes
    return rss if sys.platform == "darwin" else rss * 1024


def serialize_snapshot(snapshot: DebugSnapshot) -> tuple[str, str]:
    """Return the JSON and the flattened text rendering of one snapshot."""
    return json.dumps(snapshot.to_dict(), indent=2), render_text(snapshot)


def render_text(snapshot: DebugSnapshot) -> str:
    lines = [f"Debug log generated at {snapshot.generated_at}", ""]

    lines.append("== System ==")
    for key, value in snapshot.system_info.items():
        lines.append(f"{key}: {value}")
    lines.append("")

    lines.append("== Performance ==")
    for key, value in snapshot.performance.items():
        lines.append(f"{key}: {value}")
    lines.append("")

    lines.append(f"== Console logs ({len(snapshot.logs)}) ==")
    for e in snapshot.logs:
        lines.append(f"[{e.timestamp}] {e.level.upper()} {e.message}")
    lines.append("")

    lines.append(f"== Errors ({len(snapshot.errors)}) ==")
    for e in snapshot.errors:
        lines.append(f"[{e.timestamp}] {e.message}")
        if e.context:
            lines.append(f"  context: {json.dumps(e.context, default=str)}")
        for stack_line in e.stack.rstrip().splitlines():
            lines.append(f"  {stack_line}")
    lines.append("")

    lines.append(f"== Network requests ({len(snapshot.network_requests)}) ==")
    for e in snapshot.network_requests:
        line = f"[{e.timestamp}] {e.method} {e.url} -> {e.status} ({e.duration_ms}ms, {e.size_bytes} bytes)"
        if e.error:
            line += f" error: {e.error}"
        lines.append(line)
    lines.append("")

    lines.append(f"== User actions ({len(snapshot.user_actions)}) ==")
    for e in snapshot.user_actions:
        meta = f" {json.dumps(e.metadata, default=str)}" if e.metadata else ""
        lines.append(f"[{e.timestamp}] {e.action}{meta}")
    lines.append("")

    lines.append(f"== Terminal ({len(snapshot.terminal_logs)}) ==")
    for e in snapshot.terminal_logs:
        lines.append(f"[{e.timestamp}] {e.text}")
    lines.append("")

    return "\n".join(lines)
