"""
Supervisor ends of pipes to child processes.
"""

from   dataclasses import dataclass
import enum
import logging
import os
import socket

from   .exc import ChannelInitError, ChannelReadError

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 65536

#-------------------------------------------------------------------------------

@dataclass
class Data:
    """
    Data read from the child's fd `fd`.

    `data` is a view onto the channel's read buffer, which is reused for the
    next read.  It is released once the event callback returns; copy it out to
    keep it.
    """

    fd: int
    data: memoryview



@dataclass
class Eof:
    fd: int



@dataclass
class Error:
    fd: int
    err: ChannelReadError



class ChannelState(enum.Enum):

    IDLE    = "idle"
    READING = "reading"
    CLOSED  = "closed"



#-------------------------------------------------------------------------------

class PipeChannel:
    """
    The supervisor's end of a pipe, registered with a loop.

    The other end, `child_fd`, is handed to the child at spawn and must then be
    released in the supervisor.
    """

    def __init__(self, loop, fd, pipe_fd, child_fd, *, readable):
        """
        :param fd:
          The child fd number to which the pipe is attached.
        :param pipe_fd:
          The supervisor's end of the pipe.
        """
        self.fd         = fd
        self.readable   = readable
        self.__loop     = loop
        self.__pipe_fd  = pipe_fd
        self.__child_fd = child_fd
        self.__state    = ChannelState.IDLE
        self.__buf      = None
        self.__on_event = None


    def __repr__(self):
        return f"PipeChannel(fd={self.fd}, state={self.__state.value})"


    @classmethod
    def open(cls, loop, fd, *, readable=False, writable=True):
        """
        Creates a pipe for child fd `fd` and registers it with `loop`.

        `readable` and `writable` are from the child's point of view.

        :raise ChannelInitError:
          The OS could not create the pipe.
        """
        try:
            if readable and writable:
                ours, theirs = socket.socketpair()
                pipe_fd, child_fd = ours.detach(), theirs.detach()
            elif writable:
                pipe_fd, child_fd = os.pipe()
            else:
                child_fd, pipe_fd = os.pipe()
        except OSError as exc:
            raise ChannelInitError.from_os_error(exc) from exc

        try:
            os.set_blocking(pipe_fd, False)
        except OSError as exc:
            os.close(pipe_fd)
            os.close(child_fd)
            raise ChannelInitError.from_os_error(exc) from exc

        logger.debug(f"pipe for fd {fd}: {pipe_fd} <-> {child_fd}")
        channel = cls(loop, fd, pipe_fd, child_fd, readable=writable)
        loop.register(channel)
        return channel


    @property
    def state(self):
        return self.__state


    @property
    def child_fd(self):
        return self.__child_fd


    def fileno(self):
        return self.__pipe_fd


    def release_child_end(self):
        """
        Closes the child's end in this process.  Idempotent.

        Call this once the child has been spawned; until then, reads never see
        EOF.
        """
        if self.__child_fd is not None:
            os.close(self.__child_fd)
            self.__child_fd = None


    def start_reading(self, on_event, *, buffer_size=DEFAULT_BUFFER_SIZE):
        """
        Starts delivering `Data`, `Eof`, and `Error` events to `on_event`.

        Each readiness notification performs a single read of at most
        `buffer_size` bytes.  After `Eof` or `Error`, the channel is closed
        and no more events are delivered.
        """
        if not self.readable:
            raise ValueError(f"fd {self.fd} pipe is not readable")
        if self.__state is not ChannelState.IDLE:
            raise RuntimeError(f"can't start reading {self}")

        self.__buf = bytearray(buffer_size)
        self.__on_event = on_event
        self.__state = ChannelState.READING
        self.__loop.add_reader(self.__pipe_fd, self.__on_readable)


    def __on_readable(self):
        try:
            nread = os.readv(self.__pipe_fd, [self.__buf])
        except (BlockingIOError, InterruptedError):
            # Spurious readiness.
            return
        except OSError as exc:
            err = ChannelReadError.from_os_error(exc, self.fd)
            logger.warning(str(err))
            on_event = self.__on_event
            self.stop()
            on_event(Error(self.fd, err))
            return

        if nread == 0:
            on_event = self.__on_event
            self.stop()
            on_event(Eof(self.fd))
        else:
            with memoryview(self.__buf)[: nread] as data:
                self.__on_event(Data(self.fd, data))


    def stop(self):
        """
        Stops reading and closes the pipe.  Idempotent.

        No further events are delivered.
        """
        if self.__state is ChannelState.CLOSED:
            return

        if self.__state is ChannelState.READING:
            self.__loop.remove_reader(self.__pipe_fd)
        self.release_child_end()
        os.close(self.__pipe_fd)
        self.__state = ChannelState.CLOSED
        self.__on_event = None
        self.__loop.unregister(self)
        logger.debug(f"closed {self}")



