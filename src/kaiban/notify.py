"""Notification layer: console lines for every execution event, plus
best-effort desktop toasts when something finishes."""

from __future__ import annotations

import subprocess
import sys

from rich.markup import escape

from kaiban import log


def _run_quiet(*cmd: str) -> None:
    """Fire-and-forget subprocess, ignore failures."""
    try:
        subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except (FileNotFoundError, OSError):
        pass


def desktop_notify(message: str, *, title: str = "kaiban", urgent: bool = False) -> None:
    """Show a desktop notification toast on the current platform."""
    if sys.platform == "darwin":
        _run_quiet(
            "osascript", "-e",
            f'display notification "{message}" with title "{title}"',
        )
    elif sys.platform.startswith("linux"):
        if urgent:
            _run_quiet("notify-send", "-u", "critical", title, message)
        else:
            _run_quiet("notify-send", title, message)
    elif sys.platform == "win32":
        sound = "Hand" if urgent else "Asterisk"
        _run_quiet(
            "powershell.exe", "-Command",
            f"[System.Media.SystemSounds]::{sound}.Play()",
        )


class Notifier:
    """Receives orchestrator and batch events. The base class ignores them all."""

    def started(self, task_id: str, label: str, provider: str) -> None:
        pass

    def stopped(self, task_id: str) -> None:
        pass

    def completed(self, task_id: str, label: str) -> None:
        pass

    def timed_out(self, task_id: str, minutes: float) -> None:
        pass

    def error(self, task_id: str, message: str) -> None:
        pass

    def batch_progress(self, current: int, total: int, completed: int, skipped: int) -> None:
        pass

    def batch_finished(
        self, cancelled: bool, total: int, completed: int, skipped: int, not_started: int = 0
    ) -> None:
        pass


class ConsoleNotifier(Notifier):
    """Logs events through :mod:`kaiban.log`; finish events also raise a toast."""

    def __init__(self, *, desktop: bool = True) -> None:
        self.desktop = desktop

    def started(self, task_id: str, label: str, provider: str) -> None:
        log.task_event("●", "cyan", label, task_id, f"[dim]via {provider}[/dim]")

    def stopped(self, task_id: str) -> None:
        log.info("Stopped CLI execution", task=task_id)

    def completed(self, task_id: str, label: str) -> None:
        log.task_event("✓", "green", label, task_id)
        if self.desktop:
            desktop_notify(f"Task completed: {label}")

    def timed_out(self, task_id: str, minutes: float) -> None:
        log.warn(f"Did not finish within {minutes:g} min; no longer tracking it", task=task_id)

    def error(self, task_id: str, message: str) -> None:
        log.error(escape(message), task=task_id)
        if self.desktop:
            desktop_notify(message, title="kaiban - Error", urgent=True)

    def batch_progress(self, current: int, total: int, completed: int, skipped: int) -> None:
        log.info(f"Batch {current}/{total} (completed: {completed}, skipped: {skipped})")

    def batch_finished(
        self, cancelled: bool, total: int, completed: int, skipped: int, not_started: int = 0
    ) -> None:
        if cancelled:
            msg = f"Batch execution cancelled. Completed: {completed}, Skipped: {skipped}"
            if not_started:
                msg = f"{msg} (not started: {not_started})"
            log.warn(msg)
        else:
            msg = f"Batch execution complete. Completed: {completed}, Skipped: {skipped}"
            log.success(msg)
        if self.desktop:
            desktop_notify(msg)
