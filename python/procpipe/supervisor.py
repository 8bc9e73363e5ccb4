"""
Runs a child process, draining its piped output, until it has exited and all
its pipes have closed.
"""

import asyncio
from   dataclasses import dataclass, field
import logging
import os
import signal
import subprocess

from   .channel import PipeChannel, Data, Eof, Error, DEFAULT_BUFFER_SIZE
from   .exc import ChannelInitError, SpawnError
from   .loop import Loop
from   .process import ProcessHandle
from   .spec import Stdio

FROM_ENV = object()

logger = logging.getLogger(__name__)

#-------------------------------------------------------------------------------

def get_buffer_size(buffer_size=FROM_ENV) -> int:
    """
    Returns the pipe read buffer size.

    :param buffer_size:
      The size in bytes.  If `FROM_ENV`, uses the env var
      `PROCPIPE_BUFFER_SIZE`, else `DEFAULT_BUFFER_SIZE`.
    """
    if buffer_size is FROM_ENV:
        buffer_size = os.environ.get("PROCPIPE_BUFFER_SIZE", DEFAULT_BUFFER_SIZE)
    try:
        size = int(buffer_size)
    except (TypeError, ValueError):
        raise ValueError(f"invalid buffer size: {buffer_size!r}") from None
    if size < 1:
        raise ValueError(f"invalid buffer size: {size}")
    return size


def log_event(event):
    """
    Logs a channel event.
    """
    match event:
        case Data(fd, data):
            logger.info(f"read fd {fd}: {len(data)} bytes")
        case Eof(fd):
            logger.info(f"read fd {fd}: EOF")
        case Error(fd, err):
            logger.warning(f"read fd {fd}: {err}")


class Capture:
    """
    Channel event consumer that copies out data read from each fd.
    """

    def __init__(self, *, on_event=None):
        """
        :param on_event:
          Also passes each event to this, if not none.
        """
        self.__data = {}
        self.__on_event = on_event
        # Sequence of ("data", fd, length), ("eof", fd), ("error", fd).
        self.events = []


    def __call__(self, event):
        match event:
            case Data(fd, data):
                self.__data.setdefault(fd, bytearray()).extend(data)
                self.events.append(("data", fd, len(data)))
            case Eof(fd):
                self.events.append(("eof", fd))
            case Error(fd, _):
                self.events.append(("error", fd))
        if self.__on_event is not None:
            self.__on_event(event)


    def __getitem__(self, fd):
        return bytes(self.__data.get(fd, b""))


    def text(self, fd, encoding="utf-8"):
        return self[fd].decode(encoding, errors="replace")



def _signame(signum):
    try:
        return signal.Signals(signum).name
    except ValueError:
        return None


#-------------------------------------------------------------------------------

@dataclass
class SpawnOutcome:
    """
    The result of a supervised run.
    """

    exit_code: int
    signal: int

    # Whether each piped fd reached EOF or error.
    closed: dict = field(default_factory=dict)
    # Read errors, by fd.
    errors: dict = field(default_factory=dict)

    @property
    def captured_stream_closed(self):
        return all(self.closed.values())


    @property
    def signaled(self):
        return self.signal != 0


    def to_jso(self):
        return {
            "exit_code" : self.exit_code,
            "signal"    : self.signal,
            "signame"   : _signame(self.signal) if self.signaled else None,
            "closed"    : { str(f): c for f, c in self.closed.items() },
            "errors"    : { str(f): str(e) for f, e in self.errors.items() },
        }



class Supervisor:
    """
    Spawns one process per `proc`, and drains the pipes in its stdio.

    Stream EOF and process exit are independent terminal events; the run
    completes once both have occurred, in either order.
    """

    def __init__(
            self,
            proc,
            *,
            loop        =None,
            on_event    =None,
            buffer_size =FROM_ENV,
            timeout     =None,
    ):
        """
        :param proc:
          The `spec.Proc` to run.
        :param loop:
          The `Loop` to use.  If none, uses a new one for the run.
        :param on_event:
          Called with each channel event.  By default, logs them.
        :param timeout:
          Seconds after which to kill the process with SIGKILL, or none.  The
          process runs in its own process group, and the whole group is
          killed, so descendants holding its pipes open are killed too.
          Descendants that leave the group are not, and the run still waits
          for them to close the pipes.
        """
        self.proc = proc
        self.__loop = loop
        self.__on_event = log_event if on_event is None else on_event
        self.__buffer_size = get_buffer_size(buffer_size)
        self.__timeout = timeout

        self.__handle = None
        self.__timer = None
        self.__status = None
        self.__closed = {}
        self.__errors = {}


    @property
    def handle(self):
        return self.__handle


    def __open_channels(self, loop):
        channels = {}
        try:
            for fd, slot in enumerate(self.proc.stdio):
                if isinstance(slot, Stdio.Pipe):
                    channels[fd] = PipeChannel.open(
                        loop, fd, readable=slot.readable, writable=slot.writable)
        except ChannelInitError as exc:
            logger.error(str(exc))
            for channel in channels.values():
                channel.stop()
            raise
        return channels


    def __start(self, loop):
        if self.__handle is not None:
            raise RuntimeError("supervisor already run")

        # Pipes must exist before the spawn that references them.
        channels = self.__open_channels(loop)

        fds = []
        for fd, slot in enumerate(self.proc.stdio):
            match slot:
                case Stdio.Ignore():
                    fds.append(subprocess.DEVNULL)
                case Stdio.Inherit(fd=inherit_fd):
                    fds.append(inherit_fd)
                case Stdio.Pipe():
                    fds.append(channels[fd].child_fd)

        try:
            self.__handle = ProcessHandle.spawn(
                loop, self.proc.exe, self.proc.argv, fds, self.__on_exit,
                env =self.proc.env.build(),
                cwd =self.proc.cwd,
                new_session=self.__timeout is not None,
            )
        except SpawnError as exc:
            logger.error(f"{exc} [errno {exc.errno}]")
            for channel in channels.values():
                channel.stop()
            raise

        for fd, channel in channels.items():
            channel.release_child_end()
            if channel.readable:
                self.__closed[fd] = False
                channel.start_reading(
                    self.__on_channel_event, buffer_size=self.__buffer_size)
            else:
                # Only the child reads; closing our end gives it EOF.
                channel.stop()

        if self.__timeout is not None:
            self.__timer = loop.call_later(self.__timeout, self.__on_timeout)


    def __on_channel_event(self, event):
        match event:
            case Eof(fd):
                self.__closed[fd] = True
            case Error(fd, err):
                self.__closed[fd] = True
                self.__errors[fd] = err
        self.__on_event(event)


    def __on_exit(self, handle, exit_code, signum):
        self.__status = exit_code, signum


    def __on_timeout(self):
        self.__timer = None
        logger.warning(f"timeout after {self.__timeout} s: {self.proc.exe}")
        # Descendants may hold the pipes open after the process exits.
        self.__handle.kill(signal.SIGKILL, group=True)


    def __cancel_timer(self):
        if self.__timer is not None:
            self.__timer.cancel()
            self.__timer = None


    def __outcome(self):
        assert self.__status is not None
        assert all(self.__closed.values())
        exit_code, signum = self.__status
        return SpawnOutcome(
            exit_code   =exit_code,
            signal      =signum,
            closed      =dict(self.__closed),
            errors      =dict(self.__errors),
        )


    def run(self) -> SpawnOutcome:
        """
        Runs the process to completion.

        :raise ChannelInitError:
          A pipe could not be created.  No process was spawned.
        :raise SpawnError:
          The process could not be spawned.
        """
        loop = Loop() if self.__loop is None else self.__loop
        try:
            self.__start(loop)
            loop.run()
        finally:
            self.__cancel_timer()
            if self.__loop is None:
                loop.close()
        return self.__outcome()


    async def arun(self) -> SpawnOutcome:
        """
        Runs the process to completion in the running asyncio loop.
        """
        loop = (
            Loop(asyncio.get_running_loop()) if self.__loop is None
            else self.__loop
        )
        self.__start(loop)
        try:
            await loop.wait()
        finally:
            self.__cancel_timer()
        return self.__outcome()



def run(proc, **kw_args) -> SpawnOutcome:
    """
    Runs `proc` under a new supervisor.
    """
    return Supervisor(proc, **kw_args).run()


