"""Claude CLI provider."""

from __future__ import annotations

from kaiban.providers.base import CLIProvider

DEFAULT_RALPH_COMMAND = "/ralph-loop:ralph-loop"
DEFAULT_COMPLETION_PROMISE = "TASK COMPLETE"


class ClaudeProvider(CLIProvider):
    name = "claude"
    display_name = "Claude CLI"
    default_executable = "claude"
    default_flags = "--dangerously-skip-permissions -p"
    install_hint = "Install with: npm install -g @anthropic-ai/claude-code"

    def __init__(
        self,
        *,
        use_ralph_loop: bool = False,
        ralph_command: str = DEFAULT_RALPH_COMMAND,
        max_iterations: int = 5,
        completion_promise: str = DEFAULT_COMPLETION_PROMISE,
        **kwargs: object,
    ) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.use_ralph_loop = use_ralph_loop
        self.ralph_command = ralph_command
        self.max_iterations = max_iterations
        self.completion_promise = completion_promise

    def build_prompt(self, task_file: str) -> str:
        instruction = super().build_prompt(task_file)
        if not self.use_ralph_loop:
            return instruction
        # The ralph-loop plugin re-prompts until the completion promise is printed.
        escaped = instruction.replace('"', '\\"')
        promise = self.completion_promise.replace('"', '\\"')
        return (
            f'{self.ralph_command} "{escaped}" '
            f'--completion-promise "{promise}" --max-iterations {self.max_iterations}'
        )
