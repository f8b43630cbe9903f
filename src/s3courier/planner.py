"""Part size arithmetic for multipart uploads and copies.

The planner is a pure function of the object size and the transfer kind.
Upload parts must be at least 5 MiB (except the last one); server-side copy
parts use a coarser 512 MiB floor so large copies need fewer round trips.
"""

from __future__ import annotations

from dataclasses import dataclass

from s3courier.errors import ConfigurationError, EntityTooLarge

MiB = 1024 * 1024
GiB = 1024 * MiB
TiB = 1024 * GiB

MAX_PART_COUNT = 10000
MIN_PART_SIZE = 5 * MiB
MIN_COPY_PART_SIZE = 512 * MiB
MAX_PART_SIZE = 5 * GiB
MAX_SINGLE_PUT_SIZE = 5 * GiB
MAX_SINGLE_COPY_SIZE = 5 * GiB
MAX_MULTIPART_OBJECT_SIZE = 5 * TiB
MAX_STREAM_SIZE = MAX_PART_COUNT * MIN_PART_SIZE

UNKNOWN_SIZE = -1


@dataclass(frozen=True)
class PartPlan:
    """How an object is split into parts.

    Attributes:
        total_size: Number of bytes the plan covers.
        part_size: Size of every part except the last.
        part_count: Number of parts, between 1 and 10000.
        last_part_size: Size of the final part, ``0 < last <= part_size``.
    """

    total_size: int
    part_size: int
    part_count: int
    last_part_size: int

    def part_range(self, part_number: int) -> tuple[int, int]:
        """Return ``(offset, size)`` of a 1-based part within the object."""
        if part_number < 1 or part_number > self.part_count:
            raise ConfigurationError(
                f"part {part_number} is outside plan of {self.part_count} parts"
            )
        offset = (part_number - 1) * self.part_size
        size = self.last_part_size if part_number == self.part_count else self.part_size
        return offset, size


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def plan_parts(total_size: int, is_copy: bool = False) -> PartPlan:
    """Compute part size and count for a multipart transfer.

    Args:
        total_size: Object size in bytes, or ``-1`` when unknown.  An unknown
            size is planned as the largest streamable object.
        is_copy: Plan server-side copy parts instead of upload parts.

    Returns:
        A PartPlan covering exactly ``total_size`` bytes.

    Raises:
        EntityTooLarge: If the size exceeds 5 TiB.
        ConfigurationError: If the size is zero or a negative other than -1.
    """
    if total_size == UNKNOWN_SIZE:
        total_size = MAX_STREAM_SIZE
    if total_size > MAX_MULTIPART_OBJECT_SIZE:
        raise EntityTooLarge(total_size, MAX_MULTIPART_OBJECT_SIZE)
    if total_size <= 0:
        raise ConfigurationError(f"cannot plan parts for an object of size {total_size}")

    minimum = MIN_COPY_PART_SIZE if is_copy else MIN_PART_SIZE
    part_size = _ceil_div(total_size, MAX_PART_COUNT)
    part_size = _ceil_div(part_size, minimum) * minimum
    part_count = _ceil_div(total_size, part_size)
    last_part_size = total_size - (part_count - 1) * part_size
    return PartPlan(
        total_size=total_size,
        part_size=part_size,
        part_count=part_count,
        last_part_size=last_part_size,
    )
