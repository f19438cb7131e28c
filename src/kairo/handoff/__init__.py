"""Secure credential handoff to a child harness process."""

from kairo.handoff.guard import ResourceGuard, SignalListener, signal_exit_code
from kairo.handoff.handoff import (
    AUTH_DIR_PREFIX,
    AuthHandoff,
    HandoffState,
    exec_or_wait,
    exit_status,
    generate_script,
    new_ephemeral_dir,
    remove_dir,
    write_token,
)
from kairo.handoff.scripts import (
    LauncherScript,
    PosixShellScript,
    PowerShellScript,
    escape_powershell_arg,
    select_launcher,
)

__all__ = [
    "AUTH_DIR_PREFIX",
    "AuthHandoff",
    "HandoffState",
    "LauncherScript",
    "PosixShellScript",
    "PowerShellScript",
    "ResourceGuard",
    "SignalListener",
    "escape_powershell_arg",
    "exec_or_wait",
    "exit_status",
    "generate_script",
    "new_ephemeral_dir",
    "remove_dir",
    "select_launcher",
    "signal_exit_code",
    "write_token",
]
