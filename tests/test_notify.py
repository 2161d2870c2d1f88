"""Tests for the notification layer."""

from __future__ import annotations

from unittest.mock import patch

from kaiban import log
from kaiban.errors import looks_like_missing_executable
from kaiban.notify import ConsoleNotifier, Notifier, desktop_notify


def test_base_notifier_ignores_events():
    n = Notifier()
    n.started("task-1", "x", "Claude CLI")
    n.batch_finished(False, 1, 1, 0)


def test_console_notifier_logs_completion(capsys):
    with patch("kaiban.notify.desktop_notify") as toast:
        ConsoleNotifier(desktop=True).completed("task-1", "Add login")

    out = capsys.readouterr().out
    assert "Add login" in out
    assert "task-1" in out
    toast.assert_called_once()


def test_console_notifier_without_desktop(capsys):
    with patch("kaiban.notify.desktop_notify") as toast:
        n = ConsoleNotifier(desktop=False)
        n.completed("task-1", "Add login")
        n.error("task-1", "boom")
        n.batch_finished(True, 3, 1, 2, 1)

    toast.assert_not_called()
    captured = capsys.readouterr()
    assert "boom" in captured.err
    assert "cancelled" in captured.out
    assert "not started: 1" in captured.out


def test_started_is_console_only(capsys):
    with patch("kaiban.notify.desktop_notify") as toast:
        ConsoleNotifier().started("task-2", "Refactor", "Codex CLI")

    toast.assert_not_called()
    assert "via Codex CLI" in capsys.readouterr().out


def test_desktop_notify_linux_uses_notify_send():
    with patch("kaiban.notify.sys.platform", "linux"), patch("kaiban.notify._run_quiet") as run:
        desktop_notify("done", urgent=True)
    run.assert_called_once_with("notify-send", "-u", "critical", "kaiban", "done")


def test_desktop_notify_swallows_missing_tool():
    with patch("kaiban.notify.subprocess.Popen", side_effect=FileNotFoundError):
        desktop_notify("done")


def test_debug_only_when_verbose(capsys):
    log.debug("hidden")
    assert "hidden" not in capsys.readouterr().out

    log.set_verbose(True)
    try:
        log.debug("shown")
        assert "shown" in capsys.readouterr().out
    finally:
        log.set_verbose(False)


def test_missing_executable_patterns():
    assert looks_like_missing_executable("bash: claude: command not found")
    assert looks_like_missing_executable("[Errno 2] No such file or directory: 'codex'")
    assert not looks_like_missing_executable("")
    assert not looks_like_missing_executable("permission denied")


def test_task_tag_prefixes_line(capsys):
    log.warn("Skipping: failed", task="task-3")
    ConsoleNotifier(desktop=False).error("task-4", "bad [flags] value")

    captured = capsys.readouterr()
    assert "[WARN] [task-3] Skipping: failed" in captured.out
    assert "[task-4] bad [flags] value" in captured.err
