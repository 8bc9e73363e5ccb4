"""
Reactor binding over an asyncio event loop.

asyncio supplies readiness registration and dispatch; this adds a registry
of active handles, so that the loop runs until every registered handle has
reached its terminal state and been released.
"""

import asyncio
import functools
import logging

logger = logging.getLogger(__name__)

#-------------------------------------------------------------------------------

class Loop:

    def __init__(self, aloop=None):
        """
        :param aloop:
          The asyncio event loop to bind.  If none, creates and owns a new one.
        """
        self.__owned = aloop is None
        self.__aloop = asyncio.new_event_loop() if aloop is None else aloop
        self.__handles = set()
        # Future resolved when the last handle is unregistered.
        self.__idle = None


    def __repr__(self):
        return f"Loop({len(self.__handles)} handles)"


    @property
    def aloop(self):
        return self.__aloop


    @property
    def alive(self):
        return len(self.__handles) > 0


    def register(self, handle):
        self.__handles.add(handle)


    def unregister(self, handle):
        """
        Unregisters `handle`, if it is registered.
        """
        self.__handles.discard(handle)
        if (
                len(self.__handles) == 0
                and self.__idle is not None
                and not self.__idle.done()
        ):
            self.__idle.set_result(None)


    def add_reader(self, fd, callback, *args):
        self.__aloop.add_reader(fd, callback, *args)


    def remove_reader(self, fd):
        return self.__aloop.remove_reader(fd)


    def call_later(self, delay, callback, *args):
        return self.__aloop.call_later(delay, callback, *args)


    def call_soon_threadsafe(self, callback, *args):
        return self.__aloop.call_soon_threadsafe(callback, *args)


    def __idle_future(self):
        if self.__idle is None or self.__idle.done():
            self.__idle = self.__aloop.create_future()
        return self.__idle


    def run(self) -> int:
        """
        Dispatches callbacks until no handles are registered.

        The bound asyncio loop must not already be running.
        """
        if self.alive:
            logger.debug(f"running {self}")
            self.__aloop.run_until_complete(self.__idle_future())
        return 0


    async def wait(self) -> int:
        """
        Waits until no handles are registered.

        Use this when the bound asyncio loop is already running.
        """
        if self.alive:
            await self.__idle_future()
        return 0


    def close(self):
        """
        Closes the asyncio loop, if this loop owns it.
        """
        if self.__owned and not self.__aloop.is_closed():
            self.__aloop.close()



@functools.cache
def default_loop() -> Loop:
    """
    Returns the process-wide default loop.
    """
    return Loop()


