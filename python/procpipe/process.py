"""
Child processes, with readiness-driven exit notification.
"""

import enum
import logging
import os
import signal
import subprocess
import threading

from   .exc import SpawnError

logger = logging.getLogger(__name__)

#-------------------------------------------------------------------------------

class ProcessState(enum.Enum):

    RUNNING = "running"
    EXITED  = "exited"



def _split_returncode(returncode):
    """
    Splits a `Popen` return code into exit code and signal number.

    A child killed by a signal has exit code 0.
    """
    if returncode < 0:
        return 0, -returncode
    else:
        return returncode, 0


class ProcessHandle:
    """
    A spawned child process.

    The loop stays alive while the process runs.  When the OS reports that the
    child has terminated, the handle reaps it, invokes `on_exit(handle,
    exit_code, signal)` exactly once, and releases its OS resources.
    """

    def __init__(self, loop, popen, on_exit, *, new_session=False):
        self.__loop     = loop
        self.__popen    = popen
        self.__on_exit  = on_exit
        self.__pidfd    = None
        self.__group    = new_session
        self.state      = ProcessState.RUNNING
        self.exit_code  = None
        self.signal     = None


    def __repr__(self):
        return f"ProcessHandle(pid={self.pid}, state={self.state.value})"


    @property
    def pid(self):
        return self.__popen.pid


    @classmethod
    def spawn(
            cls, loop, exe, argv, fds, on_exit, *,
            env         =None,
            cwd         =None,
            new_session =False,
    ):
        """
        Spawns a child process.

        :param exe:
          Path to the executable.
        :param argv:
          Arguments, including argv[0].
        :param fds:
          Three fds to attach to the child's stdin, stdout, and stderr.
          `subprocess.DEVNULL` connects the child's fd to /dev/null.
        :param on_exit:
          Called with the handle, exit code, and signal number when the child
          terminates.
        :param new_session:
          If true, runs the child in a new session and process group, so that
          `kill(..., group=True)` also reaches its descendants.
        :raise SpawnError:
          The child could not be created.  `on_exit` is never called.
        """
        argv = tuple(argv)
        if len(argv) == 0:
            raise ValueError("empty argv")
        fds = tuple(fds)
        if len(fds) != 3:
            raise ValueError(f"expected 3 stdio fds; got {len(fds)}")

        try:
            popen = subprocess.Popen(
                argv,
                executable  =exe,
                stdin       =fds[0],
                stdout      =fds[1],
                stderr      =fds[2],
                env         =env,
                cwd         =cwd,
                start_new_session=new_session,
            )
        except OSError as exc:
            raise SpawnError(
                exe, exc.errno, exc.strerror or str(exc), exc.filename) from exc

        logger.info(f"spawned pid {popen.pid}: {exe}")
        handle = cls(loop, popen, on_exit, new_session=new_session)
        loop.register(handle)
        handle.__watch()
        return handle


    def __watch(self):
        try:
            self.__pidfd = os.pidfd_open(self.pid)
        except (AttributeError, OSError) as exc:
            # No pidfds on this platform; wait in a thread instead.
            logger.debug(f"no pidfd for pid {self.pid}: {exc}")
            threading.Thread(
                target  =self.__wait_thread,
                name    =f"procpipe-wait-{self.pid}",
                daemon  =True,
            ).start()
        else:
            self.__loop.add_reader(self.__pidfd, self.__on_pidfd)


    def __wait_thread(self):
        returncode = self.__popen.wait()
        self.__loop.call_soon_threadsafe(self.__exited, returncode)


    def __on_pidfd(self):
        returncode = self.__popen.poll()
        if returncode is not None:
            self.__exited(returncode)


    def __exited(self, returncode):
        if self.state is ProcessState.EXITED:
            return

        self.exit_code, self.signal = _split_returncode(returncode)
        self.state = ProcessState.EXITED
        logger.info(
            f"pid {self.pid} exited with status {self.exit_code}, "
            f"signal {self.signal}"
        )
        try:
            self.__on_exit(self, self.exit_code, self.signal)
        finally:
            self.__close()


    def __close(self):
        if self.__pidfd is not None:
            self.__loop.remove_reader(self.__pidfd)
            os.close(self.__pidfd)
            self.__pidfd = None
        self.__loop.unregister(self)


    def kill(self, signum=signal.SIGTERM, *, group=False):
        """
        Sends `signum` to the child, if it is still running.

        :param group:
          If true, sends `signum` to the child's whole process group instead,
          which may outlive the child.  The child must have been spawned with
          `new_session`.
        """
        if group:
            if not self.__group:
                raise ValueError("not spawned in a new session")
            logger.info(f"sending signal {signum} to process group {self.pid}")
            try:
                os.killpg(self.pid, signum)
            except ProcessLookupError:
                # Group is empty.
                pass
        elif self.state is ProcessState.RUNNING:
            logger.info(f"sending signal {signum} to pid {self.pid}")
            self.__popen.send_signal(signum)



