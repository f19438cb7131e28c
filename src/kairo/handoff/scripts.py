"""Launcher script variants for the credential handoff.

Each variant renders a single-use script that loads the token file into
an environment variable, deletes the token file, and only then hands
control to the target executable. The POSIX variant ``exec``s the target
and so never regains control afterwards; it therefore removes the whole
ephemeral directory (itself included) before the ``exec``.
"""

from __future__ import annotations

import re
import shlex
import sys
from abc import ABC, abstractmethod
from typing import Sequence

from kairo.errors import ValidationError

HEADER = "Generated by kairo - DO NOT EDIT"
_ENV_VAR_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_env_var_name(name: str) -> str:
    if not _ENV_VAR_RE.match(name):
        raise ValidationError(f"invalid environment variable name: {name!r}")
    return name


def escape_powershell_arg(arg: str) -> str:
    """Quote *arg* as an inert PowerShell single-quoted argument.

    Backticks are doubled first, then ``$`` gets a backtick, ``"`` is
    backslash-escaped, ``'`` is doubled, and common control characters are
    replaced with their backtick escapes.
    """
    arg = arg.replace("`", "``")
    arg = arg.replace("$", "`$")
    arg = arg.replace('"', '\\"')
    arg = arg.replace("'", "''")
    arg = arg.replace("\n", "`n")
    arg = arg.replace("\r", "`r")
    arg = arg.replace("\t", "`t")
    arg = arg.replace("\b", "`b")
    arg = arg.replace("\x00", "`0")
    return f"'{arg}'"


def _powershell_literal(value: str) -> str:
    """Single-quoted PowerShell literal for a filesystem path."""
    return "'" + value.replace("'", "''") + "'"


class LauncherScript(ABC):
    """A platform-specific handoff script renderer."""

    suffix: str = ""
    newline: str = "\n"
    encoding: str = "utf-8"
    # True when the script must be run through a host interpreter rather
    # than executed directly.
    uses_shell_host: bool = False

    @abstractmethod
    def render_lines(
        self,
        auth_dir: str,
        token_path: str,
        target: str,
        args: Sequence[str],
        env_var: str,
    ) -> list[str]:
        """Return the script body as a list of lines."""

    def render(
        self,
        auth_dir: str,
        token_path: str,
        target: str,
        args: Sequence[str],
        env_var: str,
    ) -> str:
        validate_env_var_name(env_var)
        lines = self.render_lines(auth_dir, token_path, target, args, env_var)
        return self.newline.join(lines) + self.newline

    @abstractmethod
    def host_command(self, script_path: str) -> list[str]:
        """argv that runs *script_path*."""


class PosixShellScript(LauncherScript):
    """``/bin/sh`` variant: export, delete, ``exec``."""

    suffix = ".sh"

    def render_lines(self, auth_dir, token_path, target, args, env_var):
        token = shlex.quote(token_path)
        argv = " ".join(shlex.quote(a) for a in [target, *args])
        return [
            "#!/bin/sh",
            f"# {HEADER}",
            "# Single-use launcher: loads the credential, deletes every staged file, then execs the target.",
            # The trailing sentinel keeps trailing newlines in the token intact.
            f'{env_var}="$(cat {token}; printf x)"',
            f'{env_var}="${{{env_var}%x}}"',
            f"export {env_var}",
            f"rm -f {token}",
            f"rm -rf {shlex.quote(auth_dir)}",
            f"exec {argv}",
        ]

    def host_command(self, script_path: str) -> list[str]:
        return [script_path]


class PowerShellScript(LauncherScript):
    """Windows PowerShell variant: set, delete, invoke, relay exit code."""

    suffix = ".ps1"
    newline = "\r\n"
    # Windows PowerShell 5.1 reads BOM-less scripts in the ANSI code page.
    encoding = "utf-8-sig"
    uses_shell_host = True

    def render_lines(self, auth_dir, token_path, target, args, env_var):
        token = _powershell_literal(token_path)
        invocation = " ".join(["&", _powershell_literal(target), *(escape_powershell_arg(a) for a in args)])
        return [
            f"# {HEADER}",
            "# Single-use launcher: loads the credential, deletes it, then runs the target.",
            f"$env:{env_var} = Get-Content -LiteralPath {token} -Raw",
            f"Remove-Item -LiteralPath {token} -Force",
            invocation,
            "exit $LASTEXITCODE",
        ]

    def host_command(self, script_path: str) -> list[str]:
        return ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", script_path]


def is_windows(platform: str | None = None) -> bool:
    return (platform or sys.platform).startswith("win")


def select_launcher(platform: str | None = None) -> LauncherScript:
    """Pick the launcher variant for *platform* (defaults to ``sys.platform``)."""
    if is_windows(platform):
        return PowerShellScript()
    return PosixShellScript()
