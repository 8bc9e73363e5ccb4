"""
Event-driven supervisor for a single child process and its piped stdio.
"""

from   .channel import PipeChannel, ChannelState, Data, Eof, Error
from   .exc import ProcpipeError, ChannelInitError, SpawnError, ChannelReadError
from   .loop import Loop, default_loop
from   .process import ProcessHandle, ProcessState
from   .spec import Proc, Stdio
from   .supervisor import Supervisor, SpawnOutcome, Capture, run

