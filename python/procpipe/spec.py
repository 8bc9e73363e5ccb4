"""
Specifications of processes to spawn, and of their stdio.
"""

import os

#-------------------------------------------------------------------------------

STDIN   = 0
STDOUT  = 1
STDERR  = 2

FD_NAMES = ("stdin", "stdout", "stderr")

def parse_fd(fd):
    """
    Parses a standard fd number or name.

    :raise ValueError:
      `fd` is not 0, 1, 2, or one of their names.
    """
    if isinstance(fd, str):
        try:
            return FD_NAMES.index(fd)
        except ValueError:
            try:
                fd = int(fd)
            except ValueError:
                raise ValueError(f"invalid fd: {fd}") from None
    if fd not in (STDIN, STDOUT, STDERR):
        raise ValueError(f"invalid fd: {fd}")
    return fd


#-------------------------------------------------------------------------------

class Stdio:
    """
    How each of a child's three standard fds is connected.
    """

    class Ignore:
        """
        The child's fd is connected to /dev/null.
        """

        def __eq__(self, other):
            return isinstance(other, Stdio.Ignore)


        def __repr__(self):
            return "Stdio.Ignore()"


        def to_jso(self):
            return {
                "ignore": {},
            }



    class Inherit:
        """
        The child shares the supervisor's fd `fd`.
        """

        def __init__(self, fd):
            fd = int(fd)
            if fd < 0:
                raise ValueError(f"invalid fd: {fd}")
            self.fd = fd


        def __eq__(self, other):
            return isinstance(other, Stdio.Inherit) and other.fd == self.fd


        def __repr__(self):
            return f"Stdio.Inherit({self.fd})"


        def to_jso(self):
            return {
                "inherit": {
                    "fd": self.fd,
                }
            }



    class Pipe:
        """
        A new pipe between child and supervisor.

        The flags are from the child's point of view: `writable` means the
        child writes and the supervisor reads.
        """

        def __init__(self, *, readable=False, writable=True):
            if not (readable or writable):
                raise ValueError("pipe must be readable or writable")
            self.readable = bool(readable)
            self.writable = bool(writable)


        def __eq__(self, other):
            return (
                isinstance(other, Stdio.Pipe)
                and other.readable == self.readable
                and other.writable == self.writable
            )


        def __repr__(self):
            return (
                f"Stdio.Pipe(readable={self.readable}, "
                f"writable={self.writable})"
            )


        def to_jso(self):
            return {
                "pipe": {
                    "readable": self.readable,
                    "writable": self.writable,
                }
            }



    SLOT_TYPES = (Ignore, Inherit, Pipe)

    @classmethod
    def slot_from_jso(cls, jso):
        if isinstance(jso, str):
            jso = {jso: {}}
        if not isinstance(jso, dict) or len(jso) != 1:
            raise ValueError(f"invalid stdio slot: {jso!r}")
        (kind, args), = jso.items()
        try:
            slot_cls = {
                "ignore"    : cls.Ignore,
                "inherit"   : cls.Inherit,
                "pipe"      : cls.Pipe,
            }[kind]
        except KeyError:
            raise ValueError(f"unknown stdio slot: {kind}") from None
        try:
            return slot_cls(**args)
        except TypeError as exc:
            raise ValueError(f"invalid {kind} slot: {exc}") from None


    def __init__(
            self,
            stdin   =Ignore(),
            stdout  =Inherit(STDOUT),
            stderr  =Inherit(STDERR),
    ):
        slots = (stdin, stdout, stderr)
        for fd, slot in enumerate(slots):
            if not isinstance(slot, self.SLOT_TYPES):
                raise ValueError(f"invalid stdio for {FD_NAMES[fd]}: {slot!r}")
        self.__slots = slots


    @classmethod
    def make(cls, slots={}):
        """
        Builds stdio from a mapping of fd number or name to slot.

        Slots not given keep their defaults.
        """
        kw_args = { FD_NAMES[parse_fd(fd)]: s for fd, s in dict(slots).items() }
        return cls(**kw_args)


    def __getitem__(self, fd):
        return self.__slots[parse_fd(fd)]


    def __iter__(self):
        return iter(self.__slots)


    def __len__(self):
        return len(self.__slots)


    def __eq__(self, other):
        return isinstance(other, Stdio) and tuple(other) == self.__slots


    def __repr__(self):
        return "Stdio({})".format(", ".join( repr(s) for s in self.__slots ))


    @property
    def pipes(self):
        """
        Fd numbers of the slots that are pipes.
        """
        return tuple(
            fd for fd, s in enumerate(self.__slots)
            if isinstance(s, Stdio.Pipe)
        )


    def to_jso(self):
        return [ (FD_NAMES[fd], s.to_jso()) for fd, s in enumerate(self.__slots) ]


    @classmethod
    def from_jso(cls, jso):
        """
        Parses stdio from a list of `[fd, slot]` pairs, or a dict.
        """
        items = jso.items() if isinstance(jso, dict) else jso
        return cls.make({ fd: cls.slot_from_jso(s) for fd, s in items })



#-------------------------------------------------------------------------------

class Proc:
    """
    A process to spawn.
    """

    class Env:

        def __init__(self, *, inherit=True, vars={}):
            self.__inherit = (
                inherit if isinstance(inherit, bool)
                else tuple( str(n) for n in inherit )
            )
            self.__vars = { str(n): str(v) for n, v in vars.items() }


        def to_jso(self):
            return {
                "inherit": self.__inherit,
                "vars": dict(self.__vars),
            }


        @classmethod
        def from_jso(cls, jso):
            return cls(**jso)


        def build(self, environ=os.environ):
            """
            Returns the environment dict for the child.
            """
            if self.__inherit is True:
                env = dict(environ)
            elif self.__inherit is False:
                env = {}
            else:
                env = { n: environ[n] for n in self.__inherit if n in environ }
            return env | self.__vars



    def __init__(self, argv, *, exe=None, env=Env(), cwd=None, stdio=Stdio()):
        self.argv = tuple( str(a) for a in argv )
        if len(self.argv) == 0:
            raise ValueError("empty argv")
        self.exe    = str(self.argv[0] if exe is None else exe)
        self.env    = env
        self.cwd    = None if cwd is None else str(cwd)
        self.stdio  = stdio


    def __repr__(self):
        return f"Proc({self.argv!r}, exe={self.exe!r})"


    def to_jso(self):
        return {
            "exe"   : self.exe,
            "argv"  : self.argv,
            "env"   : self.env.to_jso(),
            "cwd"   : self.cwd,
            "stdio" : self.stdio.to_jso(),
        }


    @classmethod
    def from_jso(cls, jso):
        try:
            argv = jso["argv"]
        except KeyError:
            raise ValueError("spec missing argv") from None
        return cls(
            argv,
            exe     =jso.get("exe"),
            env     =cls.Env.from_jso(jso.get("env", {})),
            cwd     =jso.get("cwd"),
            stdio   =Stdio.from_jso(jso.get("stdio", [])),
        )



