"""
Clocks that drive the render loop.

The loop only ever asks a clock for "now" and then awaits ``tick()`` to
yield until the next display refresh. A FrameClock advances one frame of
virtual time per tick, which keeps encoding deterministic and lets it run
faster than real time. A WallClock follows the monotonic system clock.
"""

import asyncio
import time


class FrameClock:
    """Virtual clock advancing exactly 1/fps seconds per tick"""

    def __init__(self, fps: int):
        self.fps = fps
        self.frame_index = 0

    def now(self) -> float:
        return self.frame_index / self.fps

    async def tick(self):
        self.frame_index += 1
        # Cooperative yield so other tasks (encoder events) get a turn
        await asyncio.sleep(0)


class WallClock:
    """Real-time clock pacing ticks at the frame rate"""

    def __init__(self, fps: int):
        self.fps = fps
        self._origin = time.monotonic()
        self._next_tick = self._origin

    def now(self) -> float:
        return time.monotonic() - self._origin

    async def tick(self):
        self._next_tick += 1.0 / self.fps
        delay = self._next_tick - time.monotonic()
        if delay < 0:
            # Running behind: resync instead of bursting to catch up
            self._next_tick = time.monotonic()
            delay = 0
        await asyncio.sleep(delay)
