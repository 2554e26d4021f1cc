"""Done Trigger — runs an AppleScript whenever a task lands in a board's Done column.

Watches the target Kanban boards of an Obsidian vault.  When a new
``[[Task]]`` appears under ``## Done``, the configured script is run with
the task passed in as an AppleScript record bound to ``input``.

REQUIREMENTS
------------
    pip install watchdog

USAGE
-----
    python done_trigger.py /path/to/vault files
    python done_trigger.py /path/to/vault add-target Boards/Work.md
    python done_trigger.py /path/to/vault config --script-file calendar.applescript --calendar Logs
    python done_trigger.py /path/to/vault watch
    python done_trigger.py /path/to/vault watch --prime --log-to-file
    python done_trigger.py /path/to/vault run
"""

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path

from watchdog.observers import Observer

from applescript_runner import ScriptAction, ScriptError
from done_watcher import DoneFileHandler, DoneSectionDispatcher
from trigger_settings import SettingsError, SettingsStore, resolve_settings_path

# ------------------------------------------------------------------
# Logging
# ------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
logger = logging.getLogger("DoneTrigger")


def setup_logging(vault_path: Path, log_to_file: bool = False, verbose: bool = False) -> None:
    """Configure console logging and optional file logging into vault/Logs/."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        logs_dir = vault_path / "Logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        date_stamp = datetime.now().strftime("%Y-%m-%d")
        log_file = logs_dir / f"done_trigger_{date_stamp}.log"
        handlers.append(logging.FileHandler(str(log_file), encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


# ------------------------------------------------------------------
# File enumeration
# ------------------------------------------------------------------

def list_markdown_files(vault: Path) -> list[str]:
    """Return every markdown note in the vault as a vault-relative path.

    Hidden folders such as .obsidian/ and .trash/ are skipped.
    """
    files = []
    for path in vault.rglob("*.md"):
        rel = path.relative_to(vault)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if path.is_file():
            files.append(rel.as_posix())
    return sorted(files)


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------

def cmd_watch(vault: Path, store: SettingsStore, args) -> int:
    settings = store.settings
    action = ScriptAction(settings, dry_run=args.dry_run)
    dispatcher = DoneSectionDispatcher(settings, action, vault=vault)

    logger.info("=" * 60)
    logger.info("Done Trigger starting")
    logger.info("Vault: %s", vault)
    logger.info("Target files: %s", ", ".join(settings.target_files) or "(none)")
    logger.info("Trigger enabled: %s", settings.enable_done_heading_trigger)
    logger.info("Dry run: %s", args.dry_run)
    logger.info("=" * 60)

    if not settings.target_files:
        logger.warning("No target files configured — use add-target to pick a board")
    if not settings.default_script.strip():
        logger.warning("Default script is empty — dispatches will run an empty script")

    if args.prime:
        dispatcher.prime()

    observer = Observer()
    handler = DoneFileHandler(vault, dispatcher, settings_store=store)
    observer.schedule(handler, str(vault), recursive=True)

    # Settings kept outside the vault need their own watch to be reloaded
    settings_dir = store.path.resolve().parent
    if not settings_dir.is_relative_to(vault):
        settings_dir.mkdir(parents=True, exist_ok=True)
        observer.schedule(handler, str(settings_dir), recursive=False)
        logger.info("Watching settings: %s", store.path)

    observer.start()
    logger.info("Watching: %s (Ctrl+C to stop)", vault)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutdown requested — stopping watcher")
        observer.stop()

    observer.join()
    dispatcher.shutdown(wait=True)
    logger.info("Done Trigger stopped gracefully")
    return 0


def cmd_run(vault: Path, store: SettingsStore, args) -> int:
    action = ScriptAction(store.settings, dry_run=args.dry_run)
    try:
        output = action()
    except ScriptError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.stderr:
            print(e.stderr, file=sys.stderr)
        return 1
    if output:
        print(output, end="" if output.endswith("\n") else "\n")
    return 0


def cmd_show(vault: Path, store: SettingsStore, args) -> int:
    print(json.dumps(store.settings.to_dict(), indent=2))
    return 0


def cmd_files(vault: Path, store: SettingsStore, args) -> int:
    targets = set(store.settings.target_files)
    for rel in list_markdown_files(vault):
        marker = "*" if rel in targets else " "
        print(f"{marker} {rel}")
    return 0


def cmd_add_target(vault: Path, store: SettingsStore, args) -> int:
    store.add_target(vault, args.path)
    return 0


def cmd_remove_target(vault: Path, store: SettingsStore, args) -> int:
    return 0 if store.remove_target(args.path) else 1


def cmd_config(vault: Path, store: SettingsStore, args) -> int:
    changes = {}
    if args.script is not None:
        changes["default_script"] = args.script
    if args.script_file is not None:
        try:
            changes["default_script"] = Path(args.script_file).read_text(encoding="utf-8")
        except OSError as e:
            raise SettingsError(f"Cannot read script file {args.script_file}: {e}") from e
    if args.calendar is not None:
        changes["calendar_name"] = args.calendar
    if args.enable_trigger is not None:
        changes["enable_done_heading_trigger"] = args.enable_trigger
    if args.interpreter is not None:
        changes["interpreter"] = args.interpreter
    if args.timeout is not None:
        changes["script_timeout"] = args.timeout if args.timeout > 0 else None

    if not changes:
        logger.info("Nothing to change")
        return 0

    store.update(**changes)
    logger.info("Updated: %s", ", ".join(sorted(changes)))
    return 0


# ------------------------------------------------------------------
# Main
# ------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Done Trigger — runs an AppleScript when a task reaches a board's Done column",
        epilog="Example: python done_trigger.py /path/to/vault watch --log-to-file",
    )
    parser.add_argument("vault", help="Path to the Obsidian vault root folder")
    parser.add_argument(
        "--settings",
        help="Settings file (default: $DONE_TRIGGER_SETTINGS or vault/done_trigger_settings.json)",
    )
    parser.add_argument(
        "--log-to-file",
        action="store_true",
        help="Also write logs to vault/Logs/done_trigger_DATE.log",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Watch target boards and run the script on new Done tasks")
    watch.add_argument(
        "--prime",
        action="store_true",
        help="Treat tasks already in Done at startup as seen (no dispatch for them)",
    )
    watch.add_argument(
        "--dry-run",
        action="store_true",
        help="Detect tasks but only log the script instead of running it",
    )
    watch.set_defaults(func=cmd_watch)

    run = sub.add_parser("run", help="Run the configured script once, with no task input")
    run.add_argument("--dry-run", action="store_true", help="Log the script instead of running it")
    run.set_defaults(func=cmd_run)

    show = sub.add_parser("show", help="Print the current settings")
    show.set_defaults(func=cmd_show)

    files = sub.add_parser("files", help="List markdown files that can be targeted (* = targeted)")
    files.set_defaults(func=cmd_files)

    add = sub.add_parser("add-target", help="Monitor a board (path relative to the vault)")
    add.add_argument("path")
    add.set_defaults(func=cmd_add_target)

    remove = sub.add_parser("remove-target", help="Stop monitoring a board")
    remove.add_argument("path")
    remove.set_defaults(func=cmd_remove_target)

    config = sub.add_parser("config", help="Change settings")
    script_group = config.add_mutually_exclusive_group()
    script_group.add_argument("--script", help="AppleScript source to run")
    script_group.add_argument("--script-file", help="Read the AppleScript source from a file")
    config.add_argument("--calendar", help="Calendar name passed to the script as calendarName")
    trigger_group = config.add_mutually_exclusive_group()
    trigger_group.add_argument(
        "--enable-trigger", dest="enable_trigger", action="store_const", const=True,
        help="Run the script on new Done tasks",
    )
    trigger_group.add_argument(
        "--disable-trigger", dest="enable_trigger", action="store_const", const=False,
        help="Ignore Done column changes",
    )
    config.add_argument("--interpreter", help="Script interpreter (default: osascript)")
    config.add_argument("--timeout", type=float, help="Script timeout in seconds (0 = none)")
    config.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    vault = Path(args.vault).resolve()
    if not vault.is_dir():
        print(f"Error: vault path does not exist: {vault}", file=sys.stderr)
        return 1

    setup_logging(vault, log_to_file=args.log_to_file, verbose=args.verbose)

    store = SettingsStore(resolve_settings_path(vault, args.settings))
    try:
        store.load()
        return args.func(vault, store, args)
    except SettingsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())


# ======================================================================
# EXAMPLE SCRIPT — add a calendar event for each completed task
# ======================================================================
#
#   tell application "Calendar"
#       tell calendar (calendarName of input)
#           set startDate to (current date)
#           make new event at end with properties ¬
#               {summary:(summary of input), description:(description of input), ¬
#                start date:startDate, end date:startDate + 30 * minutes}
#       end tell
#   end tell
#
# Save it as calendar.applescript, then:
#   python done_trigger.py "$HOME/Vault" config --script-file calendar.applescript
#
# `input` is only defined when the script is started by a Done task.  The
# `run` command executes the script without it.
#
# ======================================================================
