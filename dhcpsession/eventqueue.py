from collections import deque
import ctypes
import os
from threading import Lock
from typing import Any

from dhcpsession.exceptions import QueueFull
from dhcpsession.libc import EFD_NONBLOCK, EFD_SEMAPHORE, eventfd


class EventQueue:
    """
    A strictly non-blocking, bounded queue class based on eventfd.

    The use of eventfd allows for simple thread-safety and integration in
    various event loops: the queue is readable whenever it holds at least one
    item. ``put()`` never waits for room. When ``maxsize`` items are queued it
    raises ``QueueFull`` and the caller decides what to do with the item.
    """
    def __init__(self, maxsize: int = 0) -> None:
        self.maxsize = maxsize
        self.dq = deque()
        self.lock = Lock()
        self.fd = eventfd(0, EFD_SEMAPHORE | EFD_NONBLOCK)
        if self.fd < 0:
            errno = ctypes.get_errno()
            raise OSError(errno, os.strerror(errno))

    def fileno(self) -> int:
        return self.fd

    def close(self) -> None:
        if self.fd >= 0:
            os.close(self.fd)
            self.fd = -1

    def full(self) -> bool:
        return self.maxsize > 0 and len(self.dq) >= self.maxsize

    def __len__(self) -> int:
        return len(self.dq)

    def put(self, item: Any) -> None:
        with self.lock:
            if self.full():
                raise QueueFull(f"Queue holds {self.maxsize} items")
            self.dq.append(item)
            os.write(self.fd, bytearray(ctypes.c_uint64(1)))

    def get(self) -> Any:
        """
        Remove and return the oldest item. Raises ``BlockingIOError`` if the
        queue is empty.
        """
        os.read(self.fd, ctypes.sizeof(ctypes.c_uint64))
        return self.dq.popleft()
