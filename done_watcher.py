"""Done watcher — detects newly completed tasks on monitored Kanban boards.

Every time a target board is saved, its Done column is re-read and compared
with the column as last seen for that same file.  If the column grew, the
last task in it is treated as the one just completed and handed to the
script action.  Same-length edits, reorders and deletions never dispatch,
but they still become the new baseline.

REQUIREMENTS
------------
    pip install watchdog
"""

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEventHandler

from applescript_runner import DispatchPayload
from done_section import TaskRecord, extract_done_section, has_done_section

logger = logging.getLogger("DoneWatcher")

# Seconds to wait after a change event before reading the board
SETTLE_DELAY = 0.5


def read_text_file(path: Path) -> str:
    return Path(path).read_text(encoding="utf-8")


class ObservedState:
    """Last Done column seen for each monitored file.

    Starts empty.  A file with no entry compares as an empty column.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, list[TaskRecord]] = {}

    def get(self, path: str) -> list[TaskRecord]:
        return list(self._tasks.get(path, []))

    def replace(self, path: str, tasks: list[TaskRecord]) -> None:
        self._tasks[path] = list(tasks)

    def reset(self, path: str | None = None) -> None:
        """Forget one file's column, or every file's when ``path`` is None."""
        if path is None:
            self._tasks.clear()
        else:
            self._tasks.pop(path, None)

    def __contains__(self, path: str) -> bool:
        return path in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


class DoneSectionDispatcher:
    """Decides whether a file change is a newly completed task and dispatches it.

    ``action`` receives a DispatchPayload; ``read_file`` maps a
    vault-relative path to its text and defaults to reading it from
    ``vault``.

    Changes to the same file are handled one at a time.  Scripts run on
    ``executor`` after the file's state has been updated, so a slow or hung
    script never holds up events for any file.
    """

    def __init__(
        self,
        settings,
        action: Callable[[DispatchPayload], str],
        read_file: Callable[[str], str] | None = None,
        vault: Path | None = None,
        executor: Executor | None = None,
        max_workers: int = 4,
    ) -> None:
        self.settings = settings
        self.action = action
        self.vault = Path(vault) if vault is not None else Path.cwd()
        self.read_file = read_file or self._read_from_vault
        self.state = ObservedState()
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="done-script",
        )
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _read_from_vault(self, path: str) -> str:
        return read_text_file(self.vault / path)

    def _lock_for(self, path: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(path, threading.Lock())

    def is_target(self, path: str) -> bool:
        return path in self.settings.target_files

    def handle_file_change(self, path: str) -> DispatchPayload | None:
        """Process one change notification.  Returns the payload dispatched, if any."""
        if not self.is_target(path):
            logger.debug("Ignoring change to non-target file: %s", path)
            return None

        with self._lock_for(path):
            try:
                content = self.read_file(path)
            except Exception:
                logger.exception("Error reading changed file: %s", path)
                return None

            previous = self.state.get(path)

            # A save that truncates first shows up as an empty file.
            if not content.strip() and previous:
                logger.info("%s is empty — waiting for the write to finish", path)
                return None

            current = extract_done_section(content)

            if not current and not has_done_section(content):
                logger.debug("No Done section in %s", path)

            payload = None
            if len(current) > len(previous):
                latest = current[-1]
                payload = DispatchPayload(title=latest.title, content=latest.title)
            else:
                logger.debug(
                    "No new Done task in %s (%d → %d)",
                    path,
                    len(previous),
                    len(current),
                )

            self.state.replace(path, current)

        if payload is not None:
            self._dispatch(path, payload)
        return payload

    def _dispatch(self, path: str, payload: DispatchPayload) -> None:
        logger.info("New Done task in %s: %s", path, payload.title)
        try:
            self.executor.submit(self._run_action, payload)
        except RuntimeError:
            logger.error("Dispatcher is shut down — dropping task: %s", payload.title)

    def _run_action(self, payload: DispatchPayload) -> None:
        try:
            output = self.action(payload)
        except Exception:
            logger.exception("Script failed for task: %s", payload.title)
            return
        if output:
            logger.info("Script output:\n%s", output.strip()[-2000:])

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting dispatches; optionally wait for running scripts."""
        self.executor.shutdown(wait=wait)

    def prime(self, paths: list[str] | None = None) -> int:
        """Record the current Done column of each target without dispatching.

        Returns the number of files primed.
        """
        primed = 0
        for path in paths if paths is not None else list(self.settings.target_files):
            with self._lock_for(path):
                try:
                    content = self.read_file(path)
                except Exception:
                    logger.exception("Could not prime %s", path)
                    continue
                tasks = extract_done_section(content)
                self.state.replace(path, tasks)
            logger.info("Primed %s with %d Done task(s)", path, len(tasks))
            primed += 1
        return primed


# ------------------------------------------------------------------
# watchdog adapter
# ------------------------------------------------------------------

class DoneFileHandler(FileSystemEventHandler):
    """Feed vault file events into a DoneSectionDispatcher.

    Absolute event paths are converted to vault-relative POSIX paths, the
    same form stored in ``target_files``.  When ``settings_store`` is given,
    changes to its file are reloaded into the running settings.
    """

    def __init__(
        self,
        vault: Path,
        dispatcher: DoneSectionDispatcher,
        settings_store=None,
        settle_delay: float = SETTLE_DELAY,
    ):
        super().__init__()
        self.vault = Path(vault).resolve()
        self.dispatcher = dispatcher
        self.settings_store = settings_store
        self.settings_path = (
            Path(settings_store.path).resolve() if settings_store is not None else None
        )
        self.settle_delay = settle_delay

    def on_modified(self, event):
        if event.is_directory:
            return
        self._handle(event.src_path)

    def on_created(self, event):
        if event.is_directory:
            return
        self._handle(event.src_path)

    def on_moved(self, event):
        # Editors that save atomically write a temp file and rename it over
        # the original.
        if event.is_directory:
            return
        self._handle(event.dest_path)

    def _handle(self, raw_path) -> None:
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode("utf-8", errors="replace")
        src = Path(raw_path)

        if self.settings_path is not None and src.resolve() == self.settings_path:
            self._reload_settings()
            return

        if src.suffix != ".md":
            return
        if not self.dispatcher.settings.enable_done_heading_trigger:
            return

        rel_path = self.to_vault_path(src)
        if rel_path is None or not self.dispatcher.is_target(rel_path):
            return

        # Brief pause — let the editor finish writing the file
        if self.settle_delay:
            time.sleep(self.settle_delay)
        self.dispatcher.handle_file_change(rel_path)

    def _reload_settings(self) -> None:
        if self.settings_store.reload():
            settings = self.settings_store.settings
            logger.info(
                "Settings reloaded — targets: %s, trigger enabled: %s",
                ", ".join(settings.target_files) or "(none)",
                settings.enable_done_heading_trigger,
            )

    def to_vault_path(self, path: Path) -> str | None:
        try:
            return path.resolve().relative_to(self.vault).as_posix()
        except ValueError:
            logger.debug("Ignoring path outside vault: %s", path)
            return None
