"""Hand a secret to a child process without putting it on its command line.

The secret is staged in a private temp directory, a single-use launcher
script moves it into the child's environment and deletes it, and the
current process is replaced by (POSIX) or waits for (Windows) the script.
"""

from __future__ import annotations

import enum
import logging
import os
import pathlib
import shutil
import subprocess
import tempfile
from typing import Mapping, Sequence

from kairo.errors import FileSystemError, ValidationError
from kairo.fsutil import EXECUTABLE_FILE_MODE, PRIVATE_DIR_MODE, PRIVATE_FILE_MODE
from kairo.handoff.guard import ResourceGuard, SignalListener, signal_exit_code
from kairo.handoff.scripts import is_windows, select_launcher, validate_env_var_name

logger = logging.getLogger(__name__)

AUTH_DIR_PREFIX = "kairo-auth-"
TOKEN_PREFIX = "token-"
SCRIPT_PREFIX = "wrapper-"
DEFAULT_ENV_VAR = "ANTHROPIC_AUTH_TOKEN"


def new_ephemeral_dir(base: pathlib.Path | None = None) -> pathlib.Path:
    """Create a fresh ``kairo-auth-*`` directory (mode 0700) under the temp dir."""
    try:
        path = pathlib.Path(tempfile.mkdtemp(prefix=AUTH_DIR_PREFIX, dir=base))
    except OSError as exc:
        raise FileSystemError("failed to create ephemeral auth directory") from exc
    try:
        path.chmod(PRIVATE_DIR_MODE)
    except OSError as exc:
        remove_dir(path)
        raise FileSystemError("failed to restrict ephemeral auth directory", path=str(path)) from exc
    return path


def write_token(auth_dir: pathlib.Path, secret: str | bytes) -> pathlib.Path:
    """Write *secret* verbatim to a unique 0600 file inside *auth_dir*."""
    data = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
    try:
        fd, name = tempfile.mkstemp(prefix=TOKEN_PREFIX, dir=auth_dir)
    except OSError as exc:
        raise FileSystemError("failed to create token file", path=str(auth_dir)) from exc
    path = pathlib.Path(name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        path.chmod(PRIVATE_FILE_MODE)
    except OSError as exc:
        path.unlink(missing_ok=True)
        raise FileSystemError("failed to write token file", path=str(path)) from exc
    return path


def generate_script(
    auth_dir: pathlib.Path,
    token_path: pathlib.Path | str,
    target: str,
    args: Sequence[str] = (),
    env_var: str = DEFAULT_ENV_VAR,
    platform: str | None = None,
) -> tuple[pathlib.Path, bool]:
    """Write the launcher script for *platform* and return ``(path, uses_shell_host)``.

    Parameters
    ----------
    auth_dir:
        Ephemeral directory that holds the token; the script is written
        next to it.
    token_path:
        Token file the script loads and deletes.
    target:
        Executable the script hands control to.
    args:
        Arguments for *target*; each is quoted for the script's shell.
    env_var:
        Variable the token is exported as.
    platform:
        ``sys.platform``-style value choosing the variant.
    """
    if not str(token_path):
        raise ValidationError("token path must not be empty")
    if not target:
        raise ValidationError("target executable must not be empty")
    validate_env_var_name(env_var)

    launcher = select_launcher(platform)
    content = launcher.render(str(auth_dir), str(token_path), target, list(args), env_var)

    try:
        fd, name = tempfile.mkstemp(prefix=SCRIPT_PREFIX, suffix=launcher.suffix, dir=auth_dir)
    except OSError as exc:
        raise FileSystemError("failed to create launcher script", path=str(auth_dir)) from exc
    path = pathlib.Path(name)
    try:
        # newline="" keeps the variant's own line endings.
        with os.fdopen(fd, "w", encoding=launcher.encoding, newline="") as fh:
            fh.write(content)
        if not launcher.uses_shell_host:
            path.chmod(EXECUTABLE_FILE_MODE)
    except OSError as exc:
        path.unlink(missing_ok=True)
        raise FileSystemError("failed to write launcher script", path=str(path)) from exc
    return path, launcher.uses_shell_host


def remove_dir(path: pathlib.Path) -> None:
    """Best-effort recursive delete; failures are logged, not raised."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove ephemeral directory %s: %s", path, exc)


def exit_status(returncode: int) -> int:
    """Map a ``subprocess`` return code to a shell-style exit status."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def exec_or_wait(
    argv: Sequence[str],
    env: Mapping[str, str],
    platform: str | None = None,
) -> int:
    """Replace this process with *argv* on POSIX, or run it and wait on Windows.

    Only returns on Windows (or when ``os.execve`` is patched out).
    """
    if is_windows(platform):
        completed = subprocess.run(list(argv), env=dict(env))
        return exit_status(completed.returncode)
    executable = argv[0]
    if os.sep not in executable:
        resolved = shutil.which(executable, path=env.get("PATH"))
        if resolved is None:
            raise FileSystemError("executable not found on PATH", executable=executable)
        executable = resolved
    try:
        os.execve(executable, list(argv), dict(env))
    except OSError as exc:
        raise FileSystemError("failed to execute", executable=executable) from exc
    return 0


class HandoffState(enum.Enum):
    CREATED = "created"
    TOKEN_WRITTEN = "token_written"
    SCRIPT_GENERATED = "script_generated"
    LAUNCHED = "launched"
    INTERRUPTED = "interrupted"
    CLEANED_UP = "cleaned_up"


class AuthHandoff:
    """One secure credential handoff, from staging to cleanup.

    Parameters
    ----------
    secret:
        The credential. Never logged, never placed in argv.
    target:
        Executable to launch.
    args:
        Arguments passed to *target*.
    env_var:
        Environment variable the credential is exposed as.
    env:
        Environment for the launched script. The credential is not part
        of it; the script adds it.
    platform:
        ``sys.platform``-style override for the launcher variant.
    base_dir:
        Parent for the ephemeral directory (system temp dir by default).
    """

    def __init__(
        self,
        secret: str | bytes,
        target: str,
        args: Sequence[str] = (),
        env_var: str = DEFAULT_ENV_VAR,
        env: Mapping[str, str] | None = None,
        platform: str | None = None,
        base_dir: pathlib.Path | None = None,
    ) -> None:
        self._secret = secret
        self.target = target
        self.args = list(args)
        self.env_var = env_var
        self.env = dict(os.environ if env is None else env)
        self.env.pop(env_var, None)
        self.platform = platform
        self.base_dir = base_dir
        self.state = HandoffState.CREATED
        self.auth_dir: pathlib.Path | None = None
        self.token_path: pathlib.Path | None = None
        self.script_path: pathlib.Path | None = None
        self.uses_shell_host = False
        self.guard = ResourceGuard(self._release)
        self._listener: SignalListener | None = None

    def _release(self) -> None:
        if self._listener is not None and self._listener.received is not None:
            self.state = HandoffState.INTERRUPTED
        if self.auth_dir is not None:
            remove_dir(self.auth_dir)
            logger.debug("Removed ephemeral directory %s", self.auth_dir)
        self.state = HandoffState.CLEANED_UP

    def prepare(self) -> pathlib.Path:
        """Stage the token and script. Returns the script path."""
        if not self.target:
            raise ValidationError("target executable must not be empty")
        validate_env_var_name(self.env_var)
        self.auth_dir = new_ephemeral_dir(self.base_dir)
        try:
            self.token_path = write_token(self.auth_dir, self._secret)
            self.state = HandoffState.TOKEN_WRITTEN
            self.script_path, self.uses_shell_host = generate_script(
                self.auth_dir,
                self.token_path,
                self.target,
                self.args,
                env_var=self.env_var,
                platform=self.platform,
            )
            self.state = HandoffState.SCRIPT_GENERATED
        except BaseException:
            self.cleanup()
            raise
        return self.script_path

    def launch(self) -> int:
        """Run the staged script and return the child's exit status.

        On POSIX this does not return on success: the process is replaced
        and the script removes the staged files itself.
        """
        if self.script_path is None:
            self.prepare()
        assert self.script_path is not None

        argv = select_launcher(self.platform).host_command(str(self.script_path))
        logger.debug("Launching %s via credential handoff", self.target)

        self._listener = SignalListener(self.guard)
        with self._listener:
            self.state = HandoffState.LAUNCHED
            try:
                status = exec_or_wait(argv, self.env, self.platform)
            finally:
                self.guard.release()
        if self._listener.received is not None:
            return signal_exit_code(self._listener.received)
        return status

    def cleanup(self) -> None:
        self.guard.release()

    def __enter__(self) -> "AuthHandoff":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

