"""
Command validation for discovery/call commands and the shell tool.

Discovery and call commands come from configuration and are run without a
shell, but they are still restricted to a fixed set of well-known
executables and rejected if they contain shell syntax or reference
sensitive system locations.
"""

from __future__ import annotations

import os
import re
import shlex

ALLOWED_EXECUTABLES = frozenset({
    # Package managers
    "npm", "npx", "yarn", "pnpm",
    # Version control
    "git",
    # Build tools
    "make", "cmake", "gradle", "mvn", "ant", "cargo", "go", "rustc",
    # JavaScript runtimes and tooling
    "node", "deno", "bun", "tsc", "eslint", "prettier",
    # Python
    "python", "python3", "pip", "pip3", "poetry", "uv", "uvx",
    # POSIX utilities
    "echo", "cat", "head", "tail", "grep", "find", "ls", "pwd",
    # Containers
    "docker", "docker-compose",
    # Development servers
    "serve", "http-server",
})

_DANGEROUS_PATTERNS = (
    re.compile(r"[;&|`$(){}]"),
    re.compile(r"\|\||&&"),
    re.compile(r"[<>]"),
    re.compile(r"\\\\"),
    re.compile(r"\$\{"),
    re.compile(r"[\n\r]"),
    re.compile(r"^\s*sudo\s", re.IGNORECASE),
    re.compile(r"^\s*rm\s", re.IGNORECASE),
    re.compile(r"^\s*(curl|wget)\s.*\|\s*sh", re.IGNORECASE),
)

SENSITIVE_PATHS = (
    "/etc/passwd",
    "/etc/shadow",
    "/etc/sudoers",
    "/etc/hosts",
    "~/.ssh/",
    "~/.aws/",
    "~/.docker/",
    "/root/",
    "/proc/",
    "/sys/",
    "/dev/",
    "c:\\windows\\system32",
    "c:\\users\\",
    "%userprofile%",
    "%appdata%",
    "%temp%",
)

RESERVED_TOOL_NAMES = frozenset({
    "rm", "del", "format", "fdisk", "sudo", "su", "exec", "eval",
    "bash", "sh", "cmd", "powershell", "python", "node", "ruby",
})

_TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_VERSION_SUFFIX_RE = re.compile(r"\.\d+$")

# Shell tool checks: (pattern, description, allowed inside quotes)
_SHELL_PATTERNS: tuple[tuple[re.Pattern[str], str, bool], ...] = (
    (re.compile(r"&&|\|\|"), "Logical operators (&&, ||) that could conditionally execute commands", True),
    (re.compile(r"[;&|](?![&|])"), "Command chaining characters (;, &, |) that could execute multiple commands", True),
    (re.compile(r"[<>]"), "Redirection operators (<, >) that could access unauthorized files", True),
    (re.compile(r"\$\("), "Command substitution $() that could execute nested commands", False),
    (re.compile(r"`"), "Backticks (`) that could execute nested commands", False),
    (re.compile(r"\$\{[^}]*[:|?+-]"), "Shell parameter expansion with operations that could execute code", False),
    (re.compile(r"[\n\r]"), "Newline characters that could inject new commands", False),
)
_QUOTED_RE = re.compile(r"""(["'])(?:\\.|(?!\1).)*\1""")
_CODE_EXECUTING_COMMANDS = frozenset({"eval", "exec", "source", "."})

_DANGEROUS_ENV_VARS = ("LD_PRELOAD", "DYLD_INSERT_LIBRARIES", "NODE_OPTIONS", "ELECTRON_RUN_AS_NODE")
_SAFE_PATH_PREFIXES = ("/usr/local/bin", "/usr/bin", "/bin", "/usr/local/sbin", "/usr/sbin", "/sbin")
_SAFE_PATH_FRAGMENTS = ("node_modules/.bin", ".cargo/bin", "go/bin")


def is_executable_allowed(executable: str) -> bool:
    """Check an executable's basename against the allow-list (``python3.12`` counts as ``python3``)."""
    base = os.path.basename(executable).lower()
    if base in ALLOWED_EXECUTABLES:
        return True
    return _VERSION_SUFFIX_RE.sub("", base) in ALLOWED_EXECUTABLES


def validate_tool_command(command: str | None) -> str | None:
    """
    Validate a configured discovery or call command.

    Returns:
        None if the command is acceptable, otherwise the reason it was rejected.
    """
    if not command or not isinstance(command, str):
        return "Command must be a non-empty string"
    trimmed = command.strip()
    if not trimmed:
        return "Command cannot be empty or whitespace only"

    if any(p.search(trimmed) for p in _DANGEROUS_PATTERNS):
        return "Command contains dangerous shell metacharacters or patterns"

    lowered = trimmed.lower()
    if any(p in lowered for p in SENSITIVE_PATHS):
        return "Command attempts to access sensitive system files or directories"

    executable = trimmed.split()[0]
    if not is_executable_allowed(executable):
        return (
            f"Executable '{executable}' is not in the allowlist of permitted "
            "tool discovery/call commands"
        )
    return None


def split_command(command: str) -> list[str]:
    """Split a validated command string into an argument vector."""
    return shlex.split(command)


def validate_command_safety(command: str) -> str | None:
    """
    Screen a free-form shell command for injection patterns.

    Chaining and redirection are tolerated inside quoted strings;
    substitutions and newlines are rejected anywhere.
    """
    trimmed = command.strip()
    if not trimmed:
        return "Command cannot be empty"

    masked = _QUOTED_RE.sub(lambda m: "Q" * len(m.group(0)), trimmed)
    for pattern, description, allow_in_quotes in _SHELL_PATTERNS:
        target = masked if allow_in_quotes else trimmed
        if pattern.search(target):
            return f"Potentially dangerous command: {description}"

    base = trimmed.split()[0].lower()
    if base in _CODE_EXECUTING_COMMANDS:
        return f"Potentially dangerous command: {base} can execute arbitrary code"
    return None


def validate_tool_name(name: str | None) -> str | None:
    """Check that a discovered tool name is a plain identifier."""
    if not name or not isinstance(name, str):
        return "Tool name must be a non-empty string"
    trimmed = name.strip()
    if not trimmed:
        return "Tool name cannot be empty or whitespace only"
    if not _TOOL_NAME_RE.match(trimmed):
        return "Tool name must contain only alphanumeric characters, underscores, and hyphens"
    if len(trimmed) > 64:
        return "Tool name is too long (maximum 64 characters)"
    if trimmed.lower() in RESERVED_TOOL_NAMES:
        return f"Tool name '{trimmed}' is reserved and not allowed"
    return None


def create_secure_execution_environment(base: dict[str, str] | None = None) -> dict[str, str]:
    """
    Copy the environment without loader-injection variables and with
    ``PATH`` narrowed to well-known system and toolchain directories.
    """
    env = dict(os.environ if base is None else base)
    for name in _DANGEROUS_ENV_VARS:
        env.pop(name, None)

    if "PATH" in env:
        kept = []
        for entry in env["PATH"].split(os.pathsep):
            normalized = os.path.normpath(entry).lower()
            if normalized.startswith(_SAFE_PATH_PREFIXES) or any(
                frag in normalized for frag in _SAFE_PATH_FRAGMENTS
            ):
                kept.append(entry)
        env["PATH"] = os.pathsep.join(kept)
    return env
