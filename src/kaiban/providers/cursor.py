"""Cursor agent CLI provider."""

from __future__ import annotations

from kaiban.providers.base import CLIProvider


class CursorProvider(CLIProvider):
    name = "cursor"
    display_name = "Cursor CLI"
    # Print mode takes the prompt as the final argument.
    default_executable = "cursor-agent"
    default_flags = "--print --force"
    install_hint = "Install with: curl https://cursor.com/install -fsS | bash"
