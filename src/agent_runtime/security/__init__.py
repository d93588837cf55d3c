"""Path containment, shell quoting and command allow-listing."""

from agent_runtime.security.commands import (
    ALLOWED_EXECUTABLES,
    create_secure_execution_environment,
    is_executable_allowed,
    split_command,
    validate_command_safety,
    validate_tool_command,
    validate_tool_name,
)
from agent_runtime.security.paths import is_path_within_root, safe_resolve_path
from agent_runtime.security.shell import (
    escape_git_commit_message,
    escape_shell_arg,
    quote_command,
)

__all__ = [
    "ALLOWED_EXECUTABLES",
    "create_secure_execution_environment",
    "escape_git_commit_message",
    "escape_shell_arg",
    "is_executable_allowed",
    "is_path_within_root",
    "quote_command",
    "safe_resolve_path",
    "split_command",
    "validate_command_safety",
    "validate_tool_command",
    "validate_tool_name",
]
