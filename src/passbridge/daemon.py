"""
passbridge service — bootstrap, reload worker and HTTP threads.

Lifecycle:

    start()   build snapshot #1 (fatal on failure), install it, bind
              the HTTP server, start the reload worker
    SIGUSR1   wake the reload worker; it builds a new snapshot off to
              the side and installs it only if the build succeeded
    SIGTERM   stop serving and exit

Signal handlers only set events. Builds run on the dedicated reload
thread, never on a request thread and never inside a signal handler.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from . import BRIDGE_HOME
from .config import PID_FILE, STATUS_FILE, BridgeConfig
from .errors import PassbridgeError
from .gpg import ArmorOnlyEngine, CryptoEngine, SystemGpg
from .registry import SnapshotRegistry
from .router import RequestRouter
from .server import BridgeHTTPServer, make_server
from .snapshot import SnapshotAssembler

logger = logging.getLogger("passbridge.daemon")

RELOAD_SIGNAL = signal.SIGUSR1
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class ServiceState:
    """Thread-safe reload bookkeeping.

    Only the reload worker writes; the CLI and tests read.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_reload: Optional[datetime] = None
        self.reloads_ok: int = 0
        self.reloads_failed: int = 0
        self.errors: list[str] = []

    def record_reload(self, ok: bool, error: Optional[str] = None) -> None:
        with self._lock:
            self.last_reload = datetime.now(timezone.utc)
            if ok:
                self.reloads_ok += 1
            else:
                self.reloads_failed += 1
        if error:
            self.record_error(error)

    def record_error(self, error: str) -> None:
        """Record an error, keeping only the last 50."""
        with self._lock:
            ts = datetime.now(timezone.utc).isoformat()
            self.errors.append(f"[{ts}] {error}")
            if len(self.errors) > 50:
                self.errors = self.errors[-50:]

    def snapshot(self) -> dict:
        """Serializable view of the counters."""
        with self._lock:
            return {
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "last_reload": self.last_reload.isoformat() if self.last_reload else None,
                "reloads_ok": self.reloads_ok,
                "reloads_failed": self.reloads_failed,
                "recent_errors": self.errors[-10:],
            }


def build_engine(config: BridgeConfig) -> CryptoEngine:
    """Crypto engine for ``config``.

    Raises:
        ConfigurationError: gpg executable not found.
    """
    gpg = SystemGpg.locate(config.gpg, options=config.gpg_options)
    if config.reencode == "builtin":
        return ArmorOnlyEngine(gpg)
    return gpg


class BridgeService:
    """The bridge process: one registry, one HTTP server, one reload worker.

    Args:
        config: Bridge configuration.
        engine: Crypto engine; built from ``config`` when omitted.
    """

    def __init__(self, config: BridgeConfig, engine: Optional[CryptoEngine] = None):
        self.config = config
        self.state = ServiceState()
        self.assembler = SnapshotAssembler(
            config.store, engine or build_engine(config), workers=config.workers
        )
        self.registry: Optional[SnapshotRegistry] = None
        self._server: Optional[BridgeHTTPServer] = None
        self._stop_event = threading.Event()
        self._reload_event = threading.Event()
        self._build_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._log_handlers: list[logging.Handler] = []
        self._saved_log_level = logging.NOTSET

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); valid after start()."""
        if self._server is None:
            raise RuntimeError("service not started")
        host, port = self._server.server_address[:2]
        return host, port

    def start(self, install_signals: bool = True) -> None:
        """Build the first snapshot and start serving.

        Writes the PID file and the status file read by ``passbridge status``.

        Raises:
            PassbridgeError: The initial build failed; nothing is served.
            OSError: The listen address could not be bound.
        """
        logger.info(
            "Starting passbridge — store=%s addr=%s:%d",
            self.config.store,
            self.config.host,
            self.config.port,
        )
        self.registry = SnapshotRegistry(self.assembler.assemble())
        self.state.started_at = datetime.now(timezone.utc)

        self._server = make_server(
            RequestRouter(self.registry),
            host=self.config.host,
            port=self.config.port,
            max_body_bytes=self.config.max_body_bytes,
        )
        self._write_pid()
        self._write_status()
        if install_signals:
            self._setup_signals()

        workers = [
            ("reload", self._reload_loop),
            ("api", self._server.serve_forever),
        ]
        for name, target in workers:
            t = threading.Thread(target=target, name=f"passbridge-{name}", daemon=True)
            t.start()
            self._threads.append(t)

        host, port = self.address
        logger.info("Serving on http://%s:%d (PID %d)", host, port, os.getpid())

    def reload(self) -> None:
        """Ask the reload worker for one asynchronous rebuild."""
        self._reload_event.set()

    def rebuild(self) -> bool:
        """Build and install a new snapshot now.

        Returns:
            True if the new snapshot is live; False if the build failed and
            the previous snapshot keeps serving.
        """
        if self.registry is None:
            raise RuntimeError("service not started")
        with self._build_lock:
            try:
                snapshot = self.assembler.assemble()
            except PassbridgeError as exc:
                self.state.record_reload(False, str(exc))
                logger.error(
                    "Failed to reload (%d failed so far), still serving generation %d: %s",
                    self.state.reloads_failed,
                    self.registry.generation,
                    exc,
                )
                self._write_status()
                return False
            generation = self.registry.replace(snapshot)
            self.state.record_reload(True)
            logger.info(
                "Reload successful: generation %d, %d secret(s), %d reload(s) ok, %d failed",
                generation,
                len(snapshot),
                self.state.reloads_ok,
                self.state.reloads_failed,
            )
            self._write_status()
            return True

    def status(self) -> dict:
        """Operator view: live snapshot, generation and reload counters."""
        data: dict = {"pid": os.getpid(), "store": str(self.config.store)}
        if self._server is not None:
            host, port = self.address
            data["address"] = f"http://{host}:{port}"
        if self.registry is not None:
            installed = self.registry.installed()
            data.update(
                generation=installed.generation,
                installed_at=installed.installed_at.isoformat(),
                built_at=installed.snapshot.built_at.isoformat(),
                secrets=len(installed.snapshot),
                recipients=list(installed.snapshot.recipients),
            )
        data.update(self.state.snapshot())
        return data

    def stop(self) -> None:
        """Stop serving and join worker threads."""
        logger.info("passbridge stopping...")
        self._stop_event.set()
        self._reload_event.set()

        if self._server:
            self._server.shutdown()
            self._server.server_close()

        for t in self._threads:
            t.join(timeout=5)
        self._threads.clear()

        self._remove_pid()
        self.config.status_file.unlink(missing_ok=True)
        logger.info("passbridge stopped.")
        self._teardown_logging()

    def run_forever(self) -> None:
        """Block until stop is signaled, then shut down."""
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def _reload_loop(self) -> None:
        while True:
            self._reload_event.wait()
            if self._stop_event.is_set():
                return
            # Clear before building: a signal during the build queues
            # exactly one more build.
            self._reload_event.clear()
            try:
                self.rebuild()
            except Exception as exc:
                logger.exception("Unexpected error during reload")
                self.state.record_reload(False, f"unexpected error: {exc}")
                self._write_status()

    def setup_logging(self) -> None:
        """Log to ``<home>/logs/passbridge.log`` and stderr.

        Idempotent; the handlers are removed again by stop().
        """
        if self._log_handlers:
            return
        self.config.log_file.parent.mkdir(parents=True, exist_ok=True)
        formatter = logging.Formatter(LOG_FORMAT)
        root = logging.getLogger()
        self._saved_log_level = root.level
        for handler in (
            logging.FileHandler(self.config.log_file),
            logging.StreamHandler(sys.stderr),
        ):
            handler.setFormatter(formatter)
            root.addHandler(handler)
            self._log_handlers.append(handler)
        root.setLevel(self.config.log_level)

    def _teardown_logging(self) -> None:
        if not self._log_handlers:
            return
        root = logging.getLogger()
        for handler in self._log_handlers:
            root.removeHandler(handler)
            handler.close()
        self._log_handlers = []
        root.setLevel(self._saved_log_level)

    def _setup_signals(self) -> None:
        signal.signal(RELOAD_SIGNAL, self._handle_reload_signal)
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_stop_signal)

    def _handle_reload_signal(self, signum, frame):
        logger.info("Caught %s, reloading", signal.Signals(signum).name)
        self.reload()

    def _handle_stop_signal(self, signum, frame):
        logger.info("Received signal %s — stopping", signal.Signals(signum).name)
        self._stop_event.set()

    def _write_pid(self) -> None:
        pid_path = self.config.pid_file
        pid_path.parent.mkdir(parents=True, exist_ok=True)
        pid_path.write_text(str(os.getpid()), encoding="utf-8")

    def _remove_pid(self) -> None:
        pid_path = self.config.pid_file
        if pid_path.exists():
            pid_path.unlink()

    def _write_status(self) -> None:
        path = self.config.status_file
        tmp_path = path.with_suffix(".json.tmp")
        with self._status_lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(json.dumps(self.status(), indent=2), encoding="utf-8")
                tmp_path.rename(path)
            except OSError as exc:
                logger.warning("Could not write status file %s: %s", path, exc)


def read_pid(home: Optional[Path] = None) -> Optional[int]:
    """Read the bridge PID, cleaning up stale PID files.

    Returns:
        PID as int, or None if not running.
    """
    home = (home or Path(BRIDGE_HOME)).expanduser()
    pid_path = home / PID_FILE
    if not pid_path.exists():
        return None
    try:
        pid = int(pid_path.read_text(encoding="utf-8").strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        pid_path.unlink(missing_ok=True)
        return None


def read_status(home: Optional[Path] = None) -> Optional[dict]:
    """Last status written by the running bridge, or None."""
    home = (home or Path(BRIDGE_HOME)).expanduser()
    try:
        return json.loads((home / STATUS_FILE).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None


def is_running(home: Optional[Path] = None) -> bool:
    return read_pid(home) is not None


def send_signal(sig: int, home: Optional[Path] = None) -> Optional[int]:
    """Deliver ``sig`` to the running bridge.

    Returns:
        The PID signaled, or None if no bridge is running.
    """
    pid = read_pid(home)
    if pid is None:
        return None
    os.kill(pid, sig)
    return pid


def signal_reload(home: Optional[Path] = None) -> Optional[int]:
    """Trigger an asynchronous rebuild in the running bridge."""
    return send_signal(RELOAD_SIGNAL, home)
