import asyncio
import errno
import os
from   pathlib import Path
import signal
import sys
import time

import pytest

from   procpipe import Capture, Supervisor, SpawnError, ChannelInitError, Stdio, Eof
from   procpipe.loop import Loop
from   procpipe.process import ProcessState
from   procpipe.testing import run1
from   base import make_proc, script_argv

#-------------------------------------------------------------------------------

def test_echo():
    """
    Tests one data event with the full line, then EOF, then a clean exit.
    """
    outcome, capture = run1(["/bin/echo", "hello"], stderr=Stdio.Inherit(2))

    assert capture.events == [("data", 1, 6), ("eof", 1)]
    assert capture[1] == b"hello\n"
    assert (outcome.exit_code, outcome.signal) == (0, 0)
    assert not outcome.signaled
    assert outcome.closed == {1: True}
    assert outcome.captured_stream_closed
    assert outcome.errors == {}


def test_nonexistent():
    """
    Tests that a bad executable fails synchronously, with no events.
    """
    capture = Capture()
    supervisor = Supervisor(make_proc(["/nonexistent/binary"]), on_event=capture)
    with pytest.raises(SpawnError) as exc_info:
        supervisor.run()

    assert exc_info.value.errno is not None
    assert "No such file or directory" in str(exc_info.value)
    assert capture.events == []
    assert supervisor.handle is None


def test_chunked():
    """
    Tests output larger than the read buffer arrives in several chunks.
    """
    outcome, capture = run1(script_argv("write_bytes.py", 2000), buffer_size=1024)

    data_events = [ e for e in capture.events if e[:2] == ("data", 1) ]
    assert len(data_events) >= 2
    assert all( n <= 1024 for _, _, n in data_events )
    assert sum( n for _, _, n in data_events ) == 2000
    assert capture.events[-1] == ("eof", 1)
    assert len(capture[1]) == 2000
    assert outcome.exit_code == 0


@pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGKILL])
def test_signal(signum):
    """
    Tests death by signal is reported as a signal, not an error.
    """
    outcome, capture = run1(script_argv("kill_self.py", int(signum)))

    assert outcome.signal == signum
    assert outcome.exit_code == 0
    assert outcome.signaled
    assert outcome.to_jso()["signame"] == signum.name
    assert capture[1] == b"going\n"
    assert outcome.captured_stream_closed


def test_exit_code():
    outcome, capture = run1(script_argv("write_bytes.py", 10, "--exit", 42))
    assert (outcome.exit_code, outcome.signal) == (42, 0)
    assert capture[1] == b"ABCDEFGHIJ"


def test_stdout_and_stderr():
    """
    Tests piping both stdout and stderr at once.
    """
    outcome, capture = run1([
        sys.executable, "-c",
        "import os; os.write(1, b'out'); os.write(2, b'err')"
    ], stderr=Stdio.Pipe())
    assert outcome.exit_code == 0
    assert outcome.closed == {1: True, 2: True}
    assert capture[1] == b"out"
    assert capture[2] == b"err"


def test_eof_before_exit():
    """
    Tests that the run waits for exit after the pipe closes.
    """
    states = []
    def on_event(event):
        if isinstance(event, Eof):
            states.append(supervisor.handle.state)

    capture = Capture(on_event=on_event)
    supervisor = Supervisor(
        make_proc(script_argv("close_early.py", 0.3, 7)), on_event=capture)
    outcome = supervisor.run()

    assert states == [ProcessState.RUNNING]
    assert (outcome.exit_code, outcome.signal) == (7, 0)
    assert capture[1] == b"bye\n"
    assert outcome.closed == {1: True}


def test_exit_before_eof():
    """
    Tests that output arriving after the process exits is still drained.
    """
    states = []
    def on_event(event):
        if isinstance(event, Eof):
            states.append(supervisor.handle.state)

    capture = Capture(on_event=on_event)
    supervisor = Supervisor(
        make_proc(script_argv("linger.py", 0.3, 7)), on_event=capture)
    outcome = supervisor.run()

    assert states == [ProcessState.EXITED]
    assert (outcome.exit_code, outcome.signal) == (7, 0)
    assert capture[1] == b"late\n"
    assert outcome.closed == {1: True}


def test_order_independent():
    """
    Tests that the outcome doesn't depend on which terminal event came first.
    """
    early = Supervisor(make_proc(script_argv("close_early.py", 0.2))).run()
    late = Supervisor(make_proc(script_argv("linger.py", 0.2))).run()
    assert early == late


def test_no_pipes():
    """
    Tests a run with nothing to read completes on process exit alone.
    """
    outcome = Supervisor(
        make_proc(["/bin/echo", "hello"], stdout=Stdio.Ignore())).run()
    assert (outcome.exit_code, outcome.signal) == (0, 0)
    assert outcome.closed == {}
    assert outcome.captured_stream_closed


def test_inherit_file(tmp_path):
    """
    Tests inheriting a supervisor fd into the child's stdout.
    """
    path = tmp_path / "out"
    with open(path, "wb") as file:
        outcome = Supervisor(make_proc(
            ["/bin/echo", "to file"],
            stdout=Stdio.Inherit(file.fileno()),
        )).run()
    assert outcome.exit_code == 0
    assert path.read_bytes() == b"to file\n"


def test_stdin_pipe():
    """
    Tests that a stdin pipe is closed after spawn, so the child sees EOF.
    """
    outcome, capture = run1(
        ["/bin/cat"], stdin=Stdio.Pipe(readable=True, writable=False))
    assert outcome.exit_code == 0
    assert capture[1] == b""
    assert capture.events == [("eof", 1)]
    assert outcome.closed == {1: True}


def test_env_cwd(tmp_path):
    outcome, capture = run1(
        [sys.executable, "-c", "import os; print(os.getcwd(), os.environ['FOO'])"],
        cwd=tmp_path,
        env={"FOO": "bar"},
    )
    assert outcome.exit_code == 0
    assert capture.text(1).split() == [str(tmp_path.resolve()), "bar"]


def test_timeout():
    """
    Tests that a timeout kills the process, and is reported as a signal.
    """
    outcome, capture = run1(
        [sys.executable, "-c", "import time; print('start', flush=True); time.sleep(30)"],
        timeout=0.5,
    )
    assert outcome.signal == signal.SIGKILL
    assert outcome.exit_code == 0
    assert capture[1] == b"start\n"


def test_run_once():
    supervisor = Supervisor(make_proc(["/bin/echo"]))
    supervisor.run()
    with pytest.raises(RuntimeError):
        supervisor.run()


@pytest.mark.asyncio
async def test_arun():
    capture = Capture()
    outcome = await Supervisor(
        make_proc(["/bin/echo", "hello"]), on_event=capture).arun()
    assert (outcome.exit_code, outcome.signal) == (0, 0)
    assert capture[1] == b"hello\n"


@pytest.mark.asyncio
async def test_arun_concurrent():
    """
    Tests several supervisors running side by side in one asyncio loop.
    """
    captures = [ Capture() for _ in range(4) ]
    outcomes = await asyncio.gather(*(
        Supervisor(
            make_proc(script_argv("write_bytes.py", 3000 + i, "--exit", i)),
            on_event=c,
            buffer_size=512,
        ).arun()
        for i, c in enumerate(captures)
    ))
    for i, (outcome, capture) in enumerate(zip(outcomes, captures)):
        assert outcome.exit_code == i
        assert len(capture[1]) == 3000 + i


#-------------------------------------------------------------------------------

FD_DIR = Path("/proc/self/fd")

def count_fds():
    return len(list(FD_DIR.iterdir()))


@pytest.mark.skipif(not FD_DIR.is_dir(), reason="no /proc/self/fd")
def test_no_fd_leaks():
    """
    Tests that pipes and process handles are all released, whether the spawn
    succeeds or fails.
    """
    run1(["/bin/echo", "warm up"], stderr=Stdio.Pipe())
    before = count_fds()

    for _ in range(10):
        outcome, capture = run1(["/bin/echo", "hello"], stderr=Stdio.Pipe())
        assert outcome.closed == {1: True, 2: True}
        assert capture[1] == b"hello\n"
    for _ in range(10):
        with pytest.raises(SpawnError):
            run1(["/nonexistent/binary"], stderr=Stdio.Pipe())

    assert count_fds() == before


@pytest.mark.skipif(not FD_DIR.is_dir(), reason="no /proc/self/fd")
def test_pipe_init_error(monkeypatch):
    """
    Tests that when the second pipe can't be created, the first is closed and
    no process is spawned.
    """
    loop = Loop()
    try:
        before = count_fds()
        os_pipe = os.pipe
        calls = []

        def pipe():
            calls.append(None)
            if len(calls) == 2:
                raise OSError(errno.EMFILE, os.strerror(errno.EMFILE))
            return os_pipe()

        monkeypatch.setattr(os, "pipe", pipe)
        capture = Capture()
        supervisor = Supervisor(
            make_proc(["/bin/echo", "hello"], stderr=Stdio.Pipe()),
            loop=loop,
            on_event=capture,
        )
        with pytest.raises(ChannelInitError) as exc_info:
            supervisor.run()
        monkeypatch.undo()

        assert exc_info.value.errno == errno.EMFILE
        assert len(calls) == 2
        assert supervisor.handle is None
        assert not loop.alive
        assert capture.events == []
        assert count_fds() == before
    finally:
        loop.close()


def test_missing_cwd(tmp_path):
    """
    Tests that a spawn error for a missing cwd names the cwd.
    """
    cwd = tmp_path / "missing"
    with pytest.raises(SpawnError) as exc_info:
        run1(["/bin/echo", "hello"], cwd=cwd)
    assert exc_info.value.exe == "/bin/echo"
    assert str(exc_info.value.filename) == str(cwd)
    assert str(cwd) in str(exc_info.value)


def test_timeout_descendants():
    """
    Tests that a timeout also kills descendants holding the pipe open.
    """
    start = time.monotonic()
    outcome, capture = run1(
        ["/bin/sh", "-c", "echo start; sleep 30 & exec sleep 30"],
        timeout=0.5,
    )
    assert time.monotonic() - start < 10
    assert outcome.signal == signal.SIGKILL
    assert capture[1] == b"start\n"
    assert outcome.closed == {1: True}


def test_timeout_after_exit():
    """
    Tests that a timeout kills descendants that outlive the process.
    """
    start = time.monotonic()
    outcome, capture = run1(
        ["/bin/sh", "-c", "echo start; sleep 30 &"],
        timeout=0.5,
    )
    assert time.monotonic() - start < 10
    assert (outcome.exit_code, outcome.signal) == (0, 0)
    assert capture[1] == b"start\n"
    assert outcome.closed == {1: True}


