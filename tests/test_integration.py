"""End-to-end tests through ``python -m foreground_child``.

Each test runs the wrapper as a real process so that its own exit status,
signal death and signal handling can be observed from outside.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

from foreground_child.channel import CHANNEL_FD_ENV, MessageChannel

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX only")

TIMEOUT = 20


@pytest.fixture
def env(src_dir: Path) -> dict[str, str]:
    env = dict(os.environ)
    env["PYTHONPATH"] = str(src_dir)
    env.pop(CHANNEL_FD_ENV, None)
    return env


def wrapper_argv(fake_child: Path, *child_args: str) -> list[str]:
    return [
        sys.executable,
        "-m",
        "foreground_child",
        sys.executable,
        str(fake_child),
        *child_args,
    ]


def wait_for_file(path: Path, timeout: float = TIMEOUT) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise TimeoutError(f"{path} never appeared")
        time.sleep(0.02)


class TestExitStatus:
    def test_exit_code_mirrored(self, env, fake_child):
        result = subprocess.run(
            wrapper_argv(fake_child, "--exit-code", "7"),
            env=env,
            timeout=TIMEOUT,
            stderr=subprocess.PIPE,
        )
        assert result.returncode == 7
        assert result.stderr == b""

    def test_zero_exit(self, env, fake_child):
        result = subprocess.run(
            wrapper_argv(fake_child), env=env, timeout=TIMEOUT, stderr=subprocess.PIPE
        )
        assert result.returncode == 0
        assert result.stderr == b""

    @pytest.mark.parametrize(
        "sig", [signal.SIGTERM, signal.SIGINT, signal.SIGHUP, signal.SIGKILL]
    )
    def test_signal_death_mirrored(self, env, fake_child, sig):
        result = subprocess.run(
            wrapper_argv(fake_child, "--kill-self", sig.name),
            env=env,
            timeout=TIMEOUT,
            stderr=subprocess.PIPE,
        )
        # Negative returncode: killed by the signal, not exit(128 + N).
        assert result.returncode == -sig
        assert result.stderr == b""

    def test_sigkill_from_shell_child(self, env):
        result = subprocess.run(
            [sys.executable, "-m", "foreground_child", "sh", "-c", "kill -9 $$"],
            env=env,
            timeout=TIMEOUT,
            stderr=subprocess.PIPE,
        )
        assert result.returncode == -signal.SIGKILL
        assert result.stderr == b""

    @pytest.mark.skipif(not hasattr(signal, "SIGRTMIN"), reason="real-time signals")
    def test_realtime_signal_death_mirrored(self, env, fake_child):
        signum = signal.SIGRTMIN + 1
        result = subprocess.run(
            wrapper_argv(fake_child, "--kill-self", str(signum)),
            env=env,
            timeout=TIMEOUT,
        )
        assert result.returncode == -signum

    def test_missing_program(self, env, tmp_path: Path):
        result = subprocess.run(
            [sys.executable, "-m", "foreground_child", str(tmp_path / "missing")],
            env=env,
            timeout=TIMEOUT,
            stderr=subprocess.PIPE,
        )
        assert result.returncode == 127
        assert b"Failed to spawn" in result.stderr


class TestSignalRelay:
    def test_signals_forwarded_to_child(self, env, fake_child, tmp_path: Path):
        log_file = tmp_path / "signals.log"
        ready_file = tmp_path / "ready"
        wrapper = subprocess.Popen(
            wrapper_argv(
                fake_child,
                "--record-signals", str(log_file),
                "--ready-file", str(ready_file),
                "--exit-code", "3",
            ),
            env=env,
        )
        try:
            wait_for_file(ready_file)

            os.kill(wrapper.pid, signal.SIGUSR2)
            wait_for_file(log_file)
            os.kill(wrapper.pid, signal.SIGTERM)

            assert wrapper.wait(timeout=TIMEOUT) == 3
        finally:
            if wrapper.poll() is None:
                wrapper.kill()

        assert log_file.read_text().splitlines() == ["SIGUSR2", "SIGTERM"]

    def test_child_killed_by_forwarded_signal(self, env, fake_child, tmp_path: Path):
        wrapper = subprocess.Popen(wrapper_argv(fake_child, "--sleep", "30"), env=env)
        try:
            # Give the wrapper time to spawn and install the relay.
            time.sleep(1.0)
            os.kill(wrapper.pid, signal.SIGTERM)
            assert wrapper.wait(timeout=TIMEOUT) == -signal.SIGTERM
        finally:
            if wrapper.poll() is None:
                wrapper.kill()


class TestMessageChannel:
    def test_messages_bridged_both_ways(self, env, fake_child):
        controller, wrapper_end = MessageChannel.pair()
        wrapper_fd = wrapper_end.fileno()
        env[CHANNEL_FD_ENV] = str(wrapper_fd)

        wrapper = subprocess.Popen(
            wrapper_argv(fake_child, "--echo"), env=env, pass_fds=(wrapper_fd,)
        )
        wrapper_end.close()
        try:
            controller.send({"hello": "world"})
            assert controller.recv() == ({"echo": {"hello": "world"}, "handle": None}, None)

            r, w = os.pipe()
            os.write(w, b"sent with a handle")
            os.close(w)
            controller.send({"with": "handle"}, r)
            os.close(r)
            assert controller.recv() == (
                {"echo": {"with": "handle"}, "handle": "sent with a handle"},
                None,
            )

            controller.send({"bye": True})
            assert wrapper.wait(timeout=TIMEOUT) == 0
        finally:
            if wrapper.poll() is None:
                wrapper.kill()
            controller.close()
