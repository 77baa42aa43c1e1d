"""Development server for Kestrel.

Serves the built site with live reload and keeps it in sync with the source:
- A watchdog observer turns filesystem changes into queued change events.
- A single rebuild worker debounces bursts of events into one build.
- A threaded HTTP server serves the destination, injecting a reload script
  into HTML responses and answering missing paths with a 404.
- A WebSocket endpoint tells connected browsers to reload after a rebuild.

Key classes:
- DevServer: Main class for running the development server.
- SourceWatcher: Observer over the source tree feeding the event queue.
- RebuildWorker: Debounced rebuild thread.
- _ReloadHandler: HTTP request handler that injects reload script and enforces 404s.
- _ChangeHandler: File system event handler that filters and queues events.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import websockets
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .build import build_site
from .config import Config
from .utils import is_hidden, matches_any, posix_path

LOGGER = logging.getLogger(__name__)

WATCHED_EVENT_TYPES = frozenset({"created", "modified", "deleted", "moved"})


@dataclass(frozen=True)
class ChangeEvent:
    """A filtered filesystem change.

    Attributes:
        path: Changed path relative to the source, forward slashes.
        kind: watchdog event type (``created``, ``modified``, ...).
        timestamp: Monotonic time the event was observed.
    """

    path: str
    kind: str
    timestamp: float


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects live reload script into HTML pages.

    Attributes:
        reload_script: JavaScript code for WebSocket connection to trigger reloads.
        baseurl: Site base URL stripped from request paths.
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        if (data.type === 'reload') location.reload();
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=35729)
    baseurl = ""

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        LOGGER.debug("%s - %s", self.address_string(), format % args)

    def translate_path(self, path):
        base = self.baseurl.rstrip("/")
        if base and (path == base or path.startswith(base + "/")):
            path = path[len(base) :] or "/"
        return super().translate_path(path)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        # Never expose directory listings; treat as missing content.
        return self._serve_404()

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, status: int, path: Path):
        encoded = self._inject(path.read_text(encoding="utf-8", errors="replace"))
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with injected reload script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, error_page)
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix in (".html", ".htm"):
            self._send_html(200, path_obj)
            return None
        return super().send_head()


class _ChangeHandler(FileSystemEventHandler):
    """Filters watchdog events and forwards the rest to a queue.

    Directory events, anything under the destination, hidden paths and paths
    matching an ignore pattern are dropped.
    """

    def __init__(
        self,
        events: queue.Queue,
        source: Path,
        destination: Path,
        ignore: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.events = events
        self.source = source
        self.destination = destination
        self.ignore = list(ignore)
        self.clock = clock

    def relevant_path(self, raw_path: str) -> str | None:
        path = Path(raw_path)
        if path == self.destination or self.destination in path.parents:
            return None
        try:
            rel = path.relative_to(self.source)
        except ValueError:
            return None
        if is_hidden(rel):
            return None
        rel_text = posix_path(rel)
        if matches_any(rel_text, self.ignore):
            return None
        return rel_text

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory or event.event_type not in WATCHED_EVENT_TYPES:
            return
        candidates = [event.src_path, getattr(event, "dest_path", "") or ""]
        for raw in candidates:
            if not raw:
                continue
            rel = self.relevant_path(str(raw))
            if rel is not None:
                self.events.put(ChangeEvent(rel, event.event_type, self.clock()))
                return


class SourceWatcher:
    """Recursive watchdog observer over the site source."""

    def __init__(self, config: Config, events: queue.Queue, logger: logging.Logger | None = None):
        self.config = config
        self.events = events
        self.logger = logger or LOGGER
        self.handler = _ChangeHandler(
            events,
            config.source,
            config.destination,
            ignore=[*config.livereload_ignore, *config.exclude],
        )
        self._observer: Observer | None = None

    def start(self) -> None:
        observer = Observer()
        observer.schedule(self.handler, str(self.config.source), recursive=True)
        observer.start()
        self._observer = observer
        self.logger.info("Watching %s for changes", self.config.source)

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None


class RebuildWorker(threading.Thread):
    """Turns queued change events into debounced rebuilds.

    The first event of a batch opens a debounce window measured from that
    event's timestamp. When the window closes, every event queued meanwhile
    is drained and the build runs exactly once. Builds never overlap since
    only this thread runs them.

    Attributes:
        events: Queue of ChangeEvent items.
        build: Callable running one build.
        debounce: Debounce window in seconds.
        on_rebuild: Called after each successful build.
        rebuilds: Number of builds attempted.
    """

    def __init__(
        self,
        events: queue.Queue,
        build: Callable[[], Any],
        debounce: float = 0.5,
        on_rebuild: Callable[[], None] | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(name="kestrel-rebuild", daemon=True)
        self.events = events
        self.build = build
        self.debounce = debounce
        self.on_rebuild = on_rebuild
        self.logger = logger or LOGGER
        self.clock = clock
        self.sleep = sleep
        self.rebuilds = 0
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.is_set():
            self.process_next(timeout=1.0)

    def stop(self) -> None:
        self._stopped.set()

    def drain(self) -> list[ChangeEvent]:
        drained: list[ChangeEvent] = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained

    def process_next(self, timeout: float = 1.0) -> bool:
        """Wait for one batch of events and rebuild once for it.

        Args:
            timeout: Seconds to wait for the first event.

        Returns:
            True if a batch was processed, False on timeout.
        """
        try:
            first: ChangeEvent = self.events.get(timeout=timeout)
        except queue.Empty:
            return False
        remaining = self.debounce - (self.clock() - first.timestamp)
        if remaining > 0:
            self.sleep(remaining)
        batch = [first, *self.drain()]
        changed = sorted({event.path for event in batch})
        self.logger.info(
            "Change detected in %s%s; rebuilding...",
            ", ".join(changed[:3]),
            f" and {len(changed) - 3} more" if len(changed) > 3 else "",
        )
        self.rebuilds += 1
        try:
            self.build()
        except Exception as exc:
            self.logger.error("Rebuild failed: %s", exc)
            return True
        if self.on_rebuild is not None:
            self.on_rebuild()
        return True


class DevServer:
    """Development server with live reload functionality.

    Builds write straight into the destination the HTTP server reads from;
    there is no staging directory and no lock between the two.

    Attributes:
        config: Resolved site configuration.
        include_drafts: Whether builds include drafts.
        include_unpublished: Whether builds keep unpublished documents.
        events: Queue between the watcher and the rebuild worker.
    """

    def __init__(
        self,
        config: Config,
        include_drafts: bool = False,
        include_unpublished: bool = False,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.include_drafts = include_drafts
        self.include_unpublished = include_unpublished
        self.logger = logger or LOGGER
        self.events: queue.Queue = queue.Queue()
        self.watcher = SourceWatcher(config, self.events, logger=self.logger)
        self.worker = RebuildWorker(
            self.events,
            self.build,
            debounce=config.livereload_min_delay / 1000.0,
            on_rebuild=self._broadcast_reload if config.livereload else None,
            logger=self.logger,
        )
        if config.livereload:
            self._reload_script = _ReloadHandler.reload_script_template.format(
                ws_port=config.livereload_port
            )
        else:
            self._reload_script = ""
        self._httpd: ThreadingHTTPServer | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()

    def build(self):
        return build_site(
            self.config,
            include_drafts=self.include_drafts,
            include_unpublished=self.include_unpublished,
            logger=self.logger,
        )

    def start(self) -> None:  # pragma: no cover - integration path
        self.build()
        self._httpd = self._make_http_server()
        threading.Thread(target=self._httpd.serve_forever, daemon=True).start()
        self.logger.info(
            "Serving %s at http://%s:%d%s/",
            self.config.destination,
            self.config.host,
            self.config.port,
            self.config.baseurl.rstrip("/"),
        )
        if self.config.livereload:
            threading.Thread(target=self._start_ws, daemon=True).start()
        self.watcher.start()
        self.worker.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        self.logger.info("Shutting down")
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
        self.watcher.stop()
        self.worker.stop()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _make_http_server(self) -> ThreadingHTTPServer:
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script, "baseurl": self.config.baseurl},
        )
        handler = functools.partial(handler_cls, directory=str(self.config.destination))
        return ThreadingHTTPServer((self.config.host, self.config.port), handler)

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            self.logger.error(
                "Live reload server failed to start (port %d): %s", self.config.livereload_port, exc
            )

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, self.config.host, self.config.livereload_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self) -> None:
        if not self._loop.is_running():
            self.logger.debug("Live reload server is not running; skipping reload broadcast")
            return
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)
