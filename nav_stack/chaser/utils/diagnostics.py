# diagnostics.py
from __future__ import annotations

import logging
import threading
from typing import Hashable, Set


class LogOnce:
    """
    Emits a log record at most once per condition key.

    Keys are whatever identifies the condition, e.g. ("target", "TransformUnavailable").
    """

    def __init__(self, logger: logging.Logger):
        self._log = logger
        self._seen: Set[Hashable] = set()
        self._lock = threading.Lock()

    def _first(self, key: Hashable) -> bool:
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def log(self, level: int, key: Hashable, msg: str, *args) -> bool:
        if not self._first(key):
            return False
        self._log.log(level, msg, *args)
        return True

    def info(self, key: Hashable, msg: str, *args) -> bool:
        return self.log(logging.INFO, key, msg, *args)

    def error(self, key: Hashable, msg: str, *args) -> bool:
        return self.log(logging.ERROR, key, msg, *args)

