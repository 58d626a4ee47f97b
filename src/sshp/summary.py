"""Join-mode summary and end-of-run timing."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, TextIO

if TYPE_CHECKING:
    from .output import Palette

logger = logging.getLogger(__name__)


@dataclass
class OutputGroup:
    """Hosts that produced byte-for-byte identical output."""

    output: bytes
    hosts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")


def group_outputs(items: Iterable[tuple[str, bytes]]) -> list[OutputGroup]:
    """Partition (host, output) pairs by identical output.

    Groups come back in the order their output was first seen.
    """
    groups: dict[bytes, OutputGroup] = {}
    for host, output in items:
        group = groups.get(output)
        if group is None:
            group = groups[output] = OutputGroup(output=output)
        group.hosts.append(host)
    return list(groups.values())


class SummaryReporter:
    """Prints the join summary and logs how long the run took."""

    def __init__(self, stream: TextIO, palette: Palette):
        self.stream = stream
        self.palette = palette

    def report_groups(self, groups: list[OutputGroup], total: int) -> None:
        paint = self.palette
        count = len(groups)
        self.stream.write(
            "\n\nfinished with {} unique result{}\n\n".format(
                paint.number(count), "" if count == 1 else "s"
            )
        )
        for group in groups:
            self.stream.write(
                paint.dim(f"hosts ({len(group.hosts)}/{total}): ")
                + paint.host(" ".join(group.hosts))
                + "\n"
            )
            if group.output:
                self.stream.write(group.text + "\n")
            else:
                self.stream.write(paint.dim("no output\n") + "\n")
        self.stream.flush()

    def report_timing(self, started: float) -> int:
        """Log the end of the run; ``started`` is a monotonic timestamp."""
        delta_ms = int((time.monotonic() - started) * 1000)
        logger.debug("finished: %s (%d ms)", datetime.now().isoformat(), delta_ms)
        return delta_ms
