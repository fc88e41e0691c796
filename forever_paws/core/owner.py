"""
Single owner thread for local-store and session mutations.

Every mutation is submitted here so two sync passes, or a sync pass and a
cart edit, can never interleave their writes. Network calls stay on the
caller's thread; only the apply step runs on the owner.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class OwnerExecutor:
    def __init__(self, name: str = "forever-paws-owner"):
        self._name = name
        self._owner_ident: Optional[int] = None
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=name,
            initializer=self._register_owner,
        )

    def _register_owner(self) -> None:
        self._owner_ident = threading.get_ident()

    def on_owner(self) -> bool:
        return threading.get_ident() == self._owner_ident

    def run(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """
        Run fn on the owner thread and wait for its result.

        Calls made from the owner thread itself run inline, so owner-side code
        may call other owner-side code without deadlocking.
        """
        if self.on_owner():
            return fn(*args, **kwargs)
        return self._executor.submit(fn, *args, **kwargs).result()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
