"""
User-visible notices.

Every fatal condition produces exactly one short notice; diagnostic detail
goes to the log instead.
"""

import logging
from typing import Callable, List, Optional


class Notifier:
    """
    Collects notices and forwards them to an optional sink (a terminal, a UI).
    """

    def __init__(self, sink: Optional[Callable[[str], None]] = None):
        self.sink = sink
        self.messages: List[str] = []

    def notify(self, message: str) -> None:
        logging.info(f"Notice: {message}")
        self.messages.append(message)
        if self.sink:
            self.sink(message)
