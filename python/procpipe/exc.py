"""
Errors raised by procpipe.
"""

#-------------------------------------------------------------------------------

class ProcpipeError(Exception):
    """
    Base class for procpipe errors carrying an OS error.
    """

    def __init__(self, what, errno, strerror):
        super().__init__(f"{what}: {strerror}")
        self.errno = errno
        self.strerror = strerror


    @classmethod
    def from_os_error(cls, exc, *args):
        return cls(*args, exc.errno, exc.strerror or str(exc))



class ChannelInitError(ProcpipeError):
    """
    The OS could not create a pipe endpoint.
    """

    def __init__(self, errno, strerror):
        super().__init__("pipe init failed", errno, strerror)



class SpawnError(ProcpipeError):
    """
    The OS rejected process creation.
    """

    def __init__(self, exe, errno, strerror, filename=None):
        """
        :param filename:
          The path the OS error refers to, if not `exe`; for example, a
          missing working directory.
        """
        what = f"spawn failed: {exe}"
        if filename is not None and str(filename) != str(exe):
            what += f": {filename}"
        super().__init__(what, errno, strerror)
        self.exe = exe
        self.filename = filename



class ChannelReadError(ProcpipeError):
    """
    A read from a pipe failed.  Terminal for that channel only.
    """

    def __init__(self, fd, errno, strerror):
        super().__init__(f"read failed on fd {fd}", errno, strerror)
        self.fd = fd



