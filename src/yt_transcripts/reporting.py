from __future__ import annotations

import logging
import sys
import time
from typing import Protocol, TextIO

from tqdm import tqdm

from yt_transcripts.progress import ETA_UNKNOWN, format_time

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    def start_phase(self, name: str) -> None: ...

    def update_phase(
        self,
        percent: float,
        message: str = "",
        speed: str | None = None,
        overall: float = 0.0,
        eta: str = ETA_UNKNOWN,
    ) -> None: ...

    def complete_phase(self) -> None: ...

    def log_line(self, message: str) -> None: ...

    def finish(self, success: bool, message: str) -> None: ...


class NullProgressSink:
    def start_phase(self, name: str) -> None:
        pass

    def update_phase(
        self,
        percent: float,
        message: str = "",
        speed: str | None = None,
        overall: float = 0.0,
        eta: str = ETA_UNKNOWN,
    ) -> None:
        pass

    def complete_phase(self) -> None:
        pass

    def log_line(self, message: str) -> None:
        pass

    def finish(self, success: bool, message: str) -> None:
        pass


class LoggingProgressSink:
    """Sends phase events to the ``logging`` module, for non-interactive runs."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger
        self._phase: str | None = None

    def start_phase(self, name: str) -> None:
        self._phase = name
        self._log.info("Phase started: %s", name)

    def update_phase(
        self,
        percent: float,
        message: str = "",
        speed: str | None = None,
        overall: float = 0.0,
        eta: str = ETA_UNKNOWN,
    ) -> None:
        self._log.debug(
            "%s %.0f%% %s%s (overall %.0f%%, ETA %s)",
            self._phase,
            percent,
            message,
            f" [{speed}]" if speed else "",
            overall,
            eta,
        )

    def complete_phase(self) -> None:
        self._log.info("Phase complete: %s", self._phase)

    def log_line(self, message: str) -> None:
        self._log.info("%s", message)

    def finish(self, success: bool, message: str) -> None:
        if success:
            self._log.info("%s", message)
        else:
            self._log.error("%s", message)


class BarProgressSink:
    """One tqdm bar per phase with overall percentage and ETA in the postfix."""

    BAR_FORMAT = "{desc}|{bar}| {percentage:3.0f}%{postfix}"

    def __init__(self, *, verbose: bool = False, stream: TextIO | None = None) -> None:
        self.verbose = verbose
        self._stream = stream or sys.stderr
        self._bar: tqdm | None = None
        self._started = time.monotonic()

    def start_phase(self, name: str) -> None:
        self._close_bar()
        self._bar = tqdm(
            total=100,
            desc=name.ljust(23),
            bar_format=self.BAR_FORMAT,
            file=self._stream,
            leave=True,
        )
        self._bar.set_postfix_str("Starting...", refresh=True)

    def update_phase(
        self,
        percent: float,
        message: str = "",
        speed: str | None = None,
        overall: float = 0.0,
        eta: str = ETA_UNKNOWN,
    ) -> None:
        if self._bar is None:
            return
        self._bar.n = round(percent, 1)
        parts = [message] if message else []
        if speed:
            parts.append(speed)
        parts.append(f"ETA: {eta}")
        parts.append(f"Overall: {round(overall)}%")
        self._bar.set_postfix_str(" | ".join(parts), refresh=True)

    def complete_phase(self) -> None:
        if self._bar is None:
            return
        self._bar.n = 100
        self._bar.set_postfix_str("Complete", refresh=True)
        self._close_bar()

    def log_line(self, message: str) -> None:
        if self.verbose:
            tqdm.write(message, file=self._stream)

    def finish(self, success: bool, message: str) -> None:
        self._close_bar()
        if success:
            elapsed = format_time((time.monotonic() - self._started) * 1000)
            tqdm.write(f"\n{message} in {elapsed}", file=self._stream)
        else:
            tqdm.write(f"\nError: {message}", file=self._stream)

    def _close_bar(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
