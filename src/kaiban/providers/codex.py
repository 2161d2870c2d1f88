"""Codex CLI provider."""

from __future__ import annotations

from kaiban.providers.base import CLIProvider


class CodexProvider(CLIProvider):
    name = "codex"
    display_name = "Codex CLI"
    default_executable = "codex"
    default_flags = "exec --full-auto"
    install_hint = "Install with: npm install -g @openai/codex"
