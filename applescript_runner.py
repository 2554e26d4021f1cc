"""AppleScript runner — composes the configured script and runs it via osascript.

When a completed task is dispatched, an AppleScript record describing it is
prepended to the user's script, so the script can read it as ``input``:

    set input to {calendarName:"Logs", summary:"Buy milk", description:"Buy milk"}
    tell application "Calendar"
        tell calendar (calendarName of input)
            make new event with properties {summary:(summary of input), ...}
        end tell
    end tell

REQUIREMENTS
------------
    macOS with ``osascript`` on PATH (any other interpreter that accepts
    ``-e <script>`` can be configured instead).
"""

import logging
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_INTERPRETER = "osascript"


@dataclass(frozen=True)
class DispatchPayload:
    """Data handed to the script for one newly completed task."""

    title: str
    content: str


class ScriptError(RuntimeError):
    """The interpreter could not be started or exited with an error."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


# ------------------------------------------------------------------
# Script composition
# ------------------------------------------------------------------

def applescript_string(value: str) -> str:
    """Quote ``value`` as an AppleScript string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_input_record(calendar_name: str, payload: DispatchPayload) -> str:
    return (
        "{"
        f"calendarName:{applescript_string(calendar_name)}, "
        f"summary:{applescript_string(payload.title)}, "
        f"description:{applescript_string(payload.content)}"
        "}"
    )


def compose_script(
    script: str,
    calendar_name: str,
    payload: DispatchPayload | None = None,
) -> str:
    """Prepend ``set input to {...}`` to ``script`` when a payload is given."""
    if payload is None:
        return script
    return f"set input to {build_input_record(calendar_name, payload)}\n{script}"


# ------------------------------------------------------------------
# Execution
# ------------------------------------------------------------------

def run_applescript(
    script: str,
    calendar_name: str,
    payload: DispatchPayload | None = None,
    interpreter: str = DEFAULT_INTERPRETER,
    timeout: float | None = None,
    dry_run: bool = False,
) -> str:
    """Run the composed script and return its standard output.

    Raises ScriptError when the interpreter is missing, times out, or exits
    with a non-zero status.
    """
    composed = compose_script(script, calendar_name, payload)
    command = [interpreter, "-e", composed]

    if payload is not None:
        logger.info("Running script for task: %s", payload.title)
    else:
        logger.info("Running script (no task payload)")
    logger.debug("Composed script:\n%s", composed)

    if dry_run:
        logger.info("[DRY RUN] Would execute %s with script:\n%s", interpreter, composed)
        return ""

    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        logger.error("Interpreter not found: %s — is it installed and on PATH?", interpreter)
        raise ScriptError(f"interpreter not found: {interpreter}") from e
    except subprocess.TimeoutExpired as e:
        logger.error("Script timed out after %ss", timeout)
        raise ScriptError(f"script timed out after {timeout}s") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        logger.error(
            "Script exited with code %d: %s",
            result.returncode,
            stderr or "(no stderr)",
        )
        raise ScriptError(
            f"{interpreter} exited with code {result.returncode}",
            returncode=result.returncode,
            stderr=stderr,
        )

    if result.stderr:
        logger.warning("Script stderr:\n%s", result.stderr[-1000:])

    return result.stdout


class ScriptAction:
    """Runs the configured default script for a dispatched task.

    Settings are read at call time, so edits made between events apply to
    the next dispatch.
    """

    def __init__(self, settings, dry_run: bool = False) -> None:
        self.settings = settings
        self.dry_run = dry_run

    def __call__(self, payload: DispatchPayload | None = None) -> str:
        return run_applescript(
            self.settings.default_script,
            self.settings.calendar_name,
            payload,
            interpreter=self.settings.interpreter,
            timeout=self.settings.script_timeout,
            dry_run=self.dry_run,
        )
