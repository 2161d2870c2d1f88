"""Provider registry: build adapters by name and pick one that is installed."""

from __future__ import annotations

from dataclasses import dataclass

from kaiban.config import Config
from kaiban.errors import NoProviderError
from kaiban.providers.base import CLIProvider
from kaiban.providers.claude import ClaudeProvider
from kaiban.providers.codex import CodexProvider
from kaiban.providers.cursor import CursorProvider

# Auto-selection tries providers in this order.
PROVIDER_NAMES = ("claude", "codex", "cursor")


@dataclass
class Detection:
    name: str
    available: bool
    executable_path: str
    error: str = ""


def get_provider(name: str, cfg: Config | None = None) -> CLIProvider:
    """Return the adapter for *name* with any overrides from *cfg* applied."""
    overrides: dict[str, object] = {}
    if cfg is not None:
        overrides = {
            "executable_path": cfg.executable_path,
            "prompt_template": cfg.prompt_template,
            "additional_flags": cfg.additional_flags,
        }

    match name:
        case "claude":
            use_ralph = bool(cfg and cfg.use_ralph_loop)
            return ClaudeProvider(use_ralph_loop=use_ralph, **overrides)
        case "codex":
            return CodexProvider(**overrides)  # type: ignore[arg-type]
        case "cursor":
            return CursorProvider(**overrides)  # type: ignore[arg-type]
        case _:
            raise ValueError(f"Unknown provider: {name}")


def detect_all(cfg: Config | None = None) -> list[Detection]:
    results: list[Detection] = []
    for name in PROVIDER_NAMES:
        provider = get_provider(name, cfg if cfg and cfg.provider == name else None)
        err = provider.check_available()
        results.append(
            Detection(
                name=name,
                available=err is None,
                executable_path=provider.resolve_executable() or provider.executable_path,
                error=err or "",
            )
        )
    return results


def select_provider(mode: str = "auto", cfg: Config | None = None) -> str:
    """Return the provider to run with.

    A named provider wins when installed; otherwise (or in ``auto`` mode) the
    first installed provider in preference order is used.
    """
    if mode != "auto" and mode not in PROVIDER_NAMES:
        raise ValueError(f"Unknown provider: {mode}")

    available = [d.name for d in detect_all(cfg) if d.available]
    if mode in available:
        return mode
    if available:
        return available[0]
    raise NoProviderError("No CLI available. Install Claude CLI, Codex CLI, or Cursor CLI.")


def provider_for(cfg: Config) -> CLIProvider:
    """Resolve ``cfg.provider`` (possibly ``auto``) to a configured adapter."""
    name = select_provider(cfg.provider, cfg)
    return get_provider(name, cfg)
