import logging

from   .spec import Proc, Stdio
from   .supervisor import Capture, Supervisor, log_event

logger = logging.getLogger(__name__)

#-------------------------------------------------------------------------------

def run1(
        argv,
        *,
        stdin       =Stdio.Ignore(),
        stdout      =Stdio.Pipe(),
        stderr      =Stdio.Inherit(2),
        env         ={},
        cwd         =None,
        buffer_size =1024,
        **kw_args
):
    """
    Runs a single process, capturing its piped output.

    :param env:
      Env vars to add to the inherited environment.
    :return:
      The outcome, and the `Capture` of piped output.
    """
    proc = Proc(
        argv,
        env     =Proc.Env(vars=env),
        cwd     =cwd,
        stdio   =Stdio(stdin, stdout, stderr),
    )
    capture = Capture(on_event=log_event)
    outcome = Supervisor(
        proc, on_event=capture, buffer_size=buffer_size, **kw_args).run()
    logger.info(f"outcome: {outcome}")
    return outcome, capture


