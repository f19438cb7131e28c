"""Tests for the credential handoff."""

from __future__ import annotations

import os
import pathlib
import signal
import stat
import subprocess
import sys
import tempfile
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from kairo.errors import FileSystemError, ValidationError
from kairo.fsutil import EXECUTABLE_FILE_MODE
from kairo.handoff import (
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

real_remove_dir = remove_dir

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell and permissions")


def _mode(path: pathlib.Path) -> int:
    return stat.S_IMODE(os.stat(path).st_mode)


# ---------------------------------------------------------------------------
# Staging
# ---------------------------------------------------------------------------


class TestEphemeralDir:
    """Verify ephemeral directory creation."""

    def test_prefix_and_location(self) -> None:
        path = new_ephemeral_dir()
        try:
            assert path.name.startswith(AUTH_DIR_PREFIX)
            assert path.parent == pathlib.Path(tempfile.gettempdir())
        finally:
            path.rmdir()

    @posix_only
    def test_scenario_ten_concurrent_dirs(self, tmp_path: pathlib.Path) -> None:
        with ThreadPoolExecutor(max_workers=10) as pool:
            dirs = list(pool.map(lambda _: new_ephemeral_dir(tmp_path), range(10)))
        assert len(set(dirs)) == 10
        for d in dirs:
            assert d.is_dir()
            assert _mode(d) == 0o700

    def test_failure_is_filesystem_error(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(FileSystemError):
            new_ephemeral_dir(tmp_path / "does" / "not" / "exist")


class TestWriteToken:
    """Verify token files hold the secret verbatim."""

    @pytest.mark.parametrize(
        "secret",
        ["", "sk-abc", "unicodé ✓", "ctrl\x01\x1b", "nul\x00inside", "x" * 65536],
    )
    def test_verbatim(self, tmp_path: pathlib.Path, secret: str) -> None:
        path = write_token(tmp_path, secret)
        assert path.read_bytes() == secret.encode("utf-8")

    def test_bytes_secret(self, tmp_path: pathlib.Path) -> None:
        assert write_token(tmp_path, b"\xff\x00raw").read_bytes() == b"\xff\x00raw"

    @posix_only
    def test_private_mode(self, tmp_path: pathlib.Path) -> None:
        assert _mode(write_token(tmp_path, "k")) == 0o600

    def test_unique_names(self, tmp_path: pathlib.Path) -> None:
        assert write_token(tmp_path, "a") != write_token(tmp_path, "a")


class TestGenerateScript:
    """Verify script generation."""

    def test_empty_token_path_rejected(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(ValidationError):
            generate_script(tmp_path, "", "/bin/true", [])
        assert list(tmp_path.iterdir()) == []

    def test_empty_target_rejected(self, tmp_path: pathlib.Path) -> None:
        token = write_token(tmp_path, "k")
        with pytest.raises(ValidationError):
            generate_script(tmp_path, token, "", [])
        assert list(tmp_path.iterdir()) == [token]

    @posix_only
    def test_posix_script(self, tmp_path: pathlib.Path) -> None:
        token = write_token(tmp_path, "k")
        path, uses_host = generate_script(tmp_path, token, "/bin/true", [], platform="linux")
        assert uses_host is False
        assert path.suffix == ".sh"
        assert _mode(path) == EXECUTABLE_FILE_MODE

    def test_windows_script(self, tmp_path: pathlib.Path) -> None:
        token = write_token(tmp_path, "k")
        path, uses_host = generate_script(tmp_path, token, "C:/claude.exe", ["a"], platform="win32")
        assert uses_host is True
        assert path.suffix == ".ps1"
        raw = path.read_bytes()
        assert raw.startswith(b"\xef\xbb\xbf")
        assert b"\r\n" in raw


# ---------------------------------------------------------------------------
# Script execution
# ---------------------------------------------------------------------------


@posix_only
class TestPosixScriptExecution:
    """Run generated scripts under /bin/sh and check what the target saw."""

    def _run(self, tmp_path: pathlib.Path, secret: str | bytes) -> tuple[pathlib.Path, pathlib.Path, bytes]:
        auth_dir = new_ephemeral_dir(tmp_path)
        token = write_token(auth_dir, secret)
        out = tmp_path / "seen"
        script, _ = generate_script(
            auth_dir,
            token,
            "/bin/sh",
            ["-c", 'printf %s "$ANTHROPIC_AUTH_TOKEN" > "$1"', "sh", str(out)],
        )
        subprocess.run([str(script)], check=True, env={"PATH": "/usr/bin:/bin"})
        return auth_dir, token, out.read_bytes()

    @pytest.mark.parametrize("secret", ["", "sk-abc", "unicodé ✓", "x" * 65536, "trailing\n\n"])
    def test_token_delivered_and_deleted(self, tmp_path: pathlib.Path, secret: str) -> None:
        auth_dir, token, seen = self._run(tmp_path, secret)
        assert seen == secret.encode("utf-8")
        assert not token.exists()
        assert not auth_dir.exists()

    def test_nul_token_still_deleted(self, tmp_path: pathlib.Path) -> None:
        auth_dir, token, _ = self._run(tmp_path, "before\x00after")
        assert not token.exists()
        assert not auth_dir.exists()

    def test_args_reach_target_verbatim(self, tmp_path: pathlib.Path) -> None:
        auth_dir = new_ephemeral_dir(tmp_path)
        token = write_token(auth_dir, "k")
        out = tmp_path / "args"
        weird = ["a b", "$(touch pwned)", "it's", "*"]
        script, _ = generate_script(
            auth_dir,
            token,
            "/bin/sh",
            ["-c", 'for a in "$@"; do printf "%s\\n" "$a"; done > ' + str(out), "sh", *weird],
        )
        subprocess.run([str(script)], check=True, cwd=tmp_path)
        assert out.read_text().splitlines() == weird
        assert not (tmp_path / "pwned").exists()


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


class TestExitStatus:
    def test_normal(self) -> None:
        assert exit_status(0) == 0
        assert exit_status(3) == 3

    def test_signal(self) -> None:
        assert exit_status(-15) == 143


class TestExecOrWait:
    """Verify the process seam."""

    def test_windows_waits(self) -> None:
        with patch("kairo.handoff.handoff.subprocess.run", return_value=MagicMock(returncode=-2)) as run:
            assert exec_or_wait(["powershell", "-File", "x.ps1"], {"A": "1"}, platform="win32") == 130
        run.assert_called_once_with(["powershell", "-File", "x.ps1"], env={"A": "1"})

    @posix_only
    def test_posix_execs(self) -> None:
        with patch("kairo.handoff.handoff.os.execve") as execve:
            exec_or_wait(["/bin/true", "x"], {"A": "1"}, platform="linux")
        execve.assert_called_once_with("/bin/true", ["/bin/true", "x"], {"A": "1"})

    def test_posix_missing_executable(self) -> None:
        with pytest.raises(FileSystemError, match="not found"):
            exec_or_wait(["definitely-not-a-real-binary"], {"PATH": ""}, platform="linux")

    @posix_only
    def test_posix_exec_failure(self) -> None:
        with patch("kairo.handoff.handoff.os.execve", side_effect=PermissionError("noexec")):
            with pytest.raises(FileSystemError, match="failed to execute"):
                exec_or_wait(["/bin/true"], {}, platform="linux")


class TestAuthHandoff:
    """Verify the orchestrating object."""

    def test_prepare_stages_files(self, tmp_path: pathlib.Path) -> None:
        handoff = AuthHandoff("sk-abc", "/bin/true", base_dir=tmp_path, platform="linux")
        script = handoff.prepare()
        assert handoff.state is HandoffState.SCRIPT_GENERATED
        assert script.exists()
        assert handoff.token_path is not None and handoff.token_path.read_text() == "sk-abc"
        handoff.cleanup()
        assert handoff.state is HandoffState.CLEANED_UP
        assert not handoff.auth_dir.exists()

    def test_secret_not_in_env_or_argv(self, tmp_path: pathlib.Path) -> None:
        handoff = AuthHandoff(
            "sk-secret",
            "/bin/true",
            ["--flag"],
            env={"ANTHROPIC_AUTH_TOKEN": "stale", "PATH": "/bin"},
            base_dir=tmp_path,
            platform="win32",
        )
        with patch("kairo.handoff.handoff.subprocess.run", return_value=MagicMock(returncode=0)) as run:
            assert handoff.launch() == 0
        argv = run.call_args.args[0]
        env = run.call_args.kwargs["env"]
        assert "ANTHROPIC_AUTH_TOKEN" not in env
        assert all("sk-secret" not in a for a in argv)
        assert argv[:5] == ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File"]

    def test_windows_launch_cleans_up(self, tmp_path: pathlib.Path) -> None:
        handoff = AuthHandoff("k", "C:/claude.exe", base_dir=tmp_path, platform="win32")
        with patch("kairo.handoff.handoff.subprocess.run", return_value=MagicMock(returncode=4)):
            assert handoff.launch() == 4
        assert handoff.state is HandoffState.CLEANED_UP
        assert not handoff.auth_dir.exists()

    @posix_only
    def test_signal_while_waiting_cleans_up_and_exits(self, tmp_path: pathlib.Path) -> None:
        handoff = AuthHandoff("sk-abc", "C:/claude.exe", base_dir=tmp_path, platform="win32")

        def interrupted_run(argv: list[str], env: dict[str, str]) -> MagicMock:
            signal.raise_signal(signal.SIGTERM)
            return MagicMock(returncode=0)

        with patch("kairo.handoff.handoff.subprocess.run", side_effect=interrupted_run):
            with pytest.raises(SystemExit) as excinfo:
                handoff.launch()
        assert excinfo.value.code == 128 + signal.SIGTERM
        assert handoff.auth_dir is not None and not handoff.auth_dir.exists()
        assert handoff.guard.released

    @posix_only
    def test_signal_during_cleanup_still_removes_dir(self, tmp_path: pathlib.Path) -> None:
        handoff = AuthHandoff("sk-abc", "C:/claude.exe", base_dir=tmp_path, platform="win32")

        def interrupted_remove(path: pathlib.Path) -> None:
            signal.raise_signal(signal.SIGTERM)
            real_remove_dir(path)

        with patch("kairo.handoff.handoff.subprocess.run", return_value=MagicMock(returncode=0)):
            with patch("kairo.handoff.handoff.remove_dir", side_effect=interrupted_remove):
                assert handoff.launch() == 128 + signal.SIGTERM
        assert handoff.auth_dir is not None and not handoff.auth_dir.exists()
        assert handoff.state is HandoffState.CLEANED_UP

    @posix_only
    def test_posix_exec_failure_cleans_up(self, tmp_path: pathlib.Path) -> None:
        handoff = AuthHandoff("k", "/bin/true", base_dir=tmp_path, platform="linux")
        with patch("kairo.handoff.handoff.os.execve", side_effect=OSError("boom")):
            with pytest.raises(FileSystemError):
                handoff.launch()
        assert not handoff.auth_dir.exists()

    def test_prepare_failure_cleans_up(self, tmp_path: pathlib.Path) -> None:
        handoff = AuthHandoff("k", "/bin/true", base_dir=tmp_path)
        with patch("kairo.handoff.handoff.generate_script", side_effect=FileSystemError("nope")):
            with pytest.raises(FileSystemError):
                handoff.prepare()
        assert not handoff.auth_dir.exists()

    def test_empty_target_rejected_before_staging(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(ValidationError):
            AuthHandoff("k", "", base_dir=tmp_path).prepare()
        assert list(tmp_path.iterdir()) == []

    def test_context_manager_cleans_up(self, tmp_path: pathlib.Path) -> None:
        with AuthHandoff("k", "/bin/true", base_dir=tmp_path) as handoff:
            handoff.prepare()
            auth_dir = handoff.auth_dir
        assert not auth_dir.exists()
