"""
dhcpsession/libc.py - libc bindings not exposed by the os module
"""

import ctypes
import os

libc = ctypes.CDLL("libc.so.6", use_errno=True)

eventfd = libc.eventfd

# From bits/eventfd.h
#
EFD_SEMAPHORE = 0o0000001
EFD_NONBLOCK = 0o0004000

# From linux/prctl.h
#
PR_SET_PDEATHSIG = 1


def set_parent_death_signal(signum: int) -> None:
    """
    Ask the kernel to send ``signum`` to the calling process when its parent
    exits. Intended for use as a ``preexec_fn``.
    """
    if libc.prctl(PR_SET_PDEATHSIG, signum, 0, 0, 0) != 0:
        errno = ctypes.get_errno()
        raise OSError(errno, os.strerror(errno))
