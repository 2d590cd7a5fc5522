# Delayed call-end detection after members leave a voice call
import asyncio
from typing import Dict, Tuple


class CallEndWatcher:
    """Debounces voice-call leaves before relaying the call end.

    Discord's membership state takes a moment to settle, so a leave is only acted
    on after ``delay`` seconds. Rejoining the same channel within that window
    cancels the pending check.
    """

    def __init__(self, relay, logger, delay: float = 1.0):
        self.relay = relay
        self.logger = logger
        self.delay = delay
        self._pending: Dict[Tuple[int, int], asyncio.Task] = {}

    @property
    def pending(self):
        return dict(self._pending)

    def member_left(self, channel_id: int, member_id: int):
        key = (channel_id, member_id)
        self._cancel(key)
        self._pending[key] = asyncio.create_task(self._wait_and_end(key))

    def member_joined(self, channel_id: int, member_id: int):
        if self._cancel((channel_id, member_id)):
            self.logger.debug(f"Member {member_id} rejoined call in {channel_id}, keeping call open")

    def _cancel(self, key) -> bool:
        task = self._pending.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self):
        for key in list(self._pending):
            self._cancel(key)

    async def _wait_and_end(self, key):
        channel_id, _ = key
        try:
            await asyncio.sleep(self.delay)
            await self.relay.handle_call_end(channel_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.error(f"Call end check failed for {channel_id}: {exc}", exc_info=True)
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]
