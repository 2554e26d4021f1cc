"""Tests for script composition and osascript invocation.

subprocess.run is replaced in every test; osascript is never started.
"""

import subprocess

import pytest

import applescript_runner
from applescript_runner import (
    DispatchPayload,
    ScriptAction,
    ScriptError,
    applescript_string,
    compose_script,
    run_applescript,
)
from trigger_settings import MonitorConfig


class FakeRun:
    def __init__(self, returncode=0, stdout="", stderr="", exc=None):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.exc = exc
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        if self.exc is not None:
            raise self.exc
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeRun(stdout="ok\n")
    monkeypatch.setattr(applescript_runner.subprocess, "run", fake)
    return fake


def test_compose_prepends_input_record():
    payload = DispatchPayload(title="Buy milk", content="Buy milk")
    assert compose_script("say input", "Logs", payload) == (
        'set input to {calendarName:"Logs", summary:"Buy milk", description:"Buy milk"}\n'
        "say input"
    )


def test_compose_without_payload_returns_script_unchanged():
    assert compose_script("say input", "Logs") == "say input"


def test_quotes_and_backslashes_are_escaped():
    assert applescript_string('say "hi"') == '"say \\"hi\\""'
    assert applescript_string("a\\b") == '"a\\\\b"'

    payload = DispatchPayload(title='Fix "bug"', content='Fix "bug"')
    composed = compose_script("", "Work", payload)
    assert 'summary:"Fix \\"bug\\""' in composed


def test_run_passes_script_as_single_argument(fake_run):
    payload = DispatchPayload(title="it's done", content="it's done")
    output = run_applescript("return 1", "Logs", payload)

    assert output == "ok\n"
    command, kwargs = fake_run.calls[0]
    assert command[:2] == ["osascript", "-e"]
    assert command[2].startswith('set input to {calendarName:"Logs", summary:"it\'s done"')
    assert command[2].endswith("\nreturn 1")
    assert kwargs["capture_output"] is True
    assert kwargs["timeout"] is None


def test_nonzero_exit_raises_script_error(monkeypatch):
    fake = FakeRun(returncode=1, stderr="syntax error")
    monkeypatch.setattr(applescript_runner.subprocess, "run", fake)

    with pytest.raises(ScriptError) as excinfo:
        run_applescript("bogus", "Logs")
    assert excinfo.value.returncode == 1
    assert excinfo.value.stderr == "syntax error"


def test_missing_interpreter_raises_script_error(monkeypatch):
    monkeypatch.setattr(
        applescript_runner.subprocess, "run", FakeRun(exc=FileNotFoundError("osascript"))
    )
    with pytest.raises(ScriptError, match="interpreter not found"):
        run_applescript("return 1", "Logs")


def test_timeout_raises_script_error(monkeypatch):
    monkeypatch.setattr(
        applescript_runner.subprocess,
        "run",
        FakeRun(exc=subprocess.TimeoutExpired(["osascript"], 5)),
    )
    with pytest.raises(ScriptError, match="timed out"):
        run_applescript("delay 10", "Logs", timeout=5)


def test_dry_run_does_not_execute(fake_run):
    payload = DispatchPayload(title="A", content="A")
    assert run_applescript("return 1", "Logs", payload, dry_run=True) == ""
    assert fake_run.calls == []


def test_script_action_reads_current_settings(fake_run):
    settings = MonitorConfig(default_script="say input", calendar_name="Logs")
    action = ScriptAction(settings)

    settings.calendar_name = "Work"
    settings.interpreter = "/usr/local/bin/osascript"
    settings.script_timeout = 30
    action(DispatchPayload(title="A", content="A"))

    command, kwargs = fake_run.calls[0]
    assert command[0] == "/usr/local/bin/osascript"
    assert 'calendarName:"Work"' in command[2]
    assert kwargs["timeout"] == 30


def test_script_action_without_payload_runs_plain_script(fake_run):
    action = ScriptAction(MonitorConfig(default_script="return 42"))
    action()
    command, _ = fake_run.calls[0]
    assert command == ["osascript", "-e", "return 42"]
