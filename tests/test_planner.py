"""Tests for multipart part planning."""

import pytest

from s3courier.errors import ConfigurationError, EntityTooLarge
from s3courier.planner import (
    GiB,
    MAX_MULTIPART_OBJECT_SIZE,
    MAX_PART_COUNT,
    MAX_STREAM_SIZE,
    MiB,
    MIN_COPY_PART_SIZE,
    MIN_PART_SIZE,
    TiB,
    plan_parts,
)

SAMPLE_SIZES = [
    1,
    1023,
    MIN_PART_SIZE - 1,
    MIN_PART_SIZE,
    MIN_PART_SIZE + 1,
    100 * MiB + 7,
    5 * GiB,
    5 * GiB + 1,
    48828 * MiB,
    50 * GiB - 1,
    TiB,
    3 * TiB + 12345,
    MAX_MULTIPART_OBJECT_SIZE,
]


class TestPlanInvariants:
    """Every plan covers the object exactly within the part limits."""

    @pytest.mark.parametrize("size", SAMPLE_SIZES)
    @pytest.mark.parametrize("is_copy", [False, True])
    def test_plan_covers_size(self, size, is_copy):
        """Parts add up to the size, stay within 10000, and respect the floor."""
        plan = plan_parts(size, is_copy=is_copy)
        minimum = MIN_COPY_PART_SIZE if is_copy else MIN_PART_SIZE
        assert 1 <= plan.part_count <= MAX_PART_COUNT
        assert plan.part_size >= minimum
        assert plan.part_size % minimum == 0
        assert 0 < plan.last_part_size <= plan.part_size
        assert (plan.part_count - 1) * plan.part_size + plan.last_part_size == size

    @pytest.mark.parametrize("size", SAMPLE_SIZES)
    def test_part_ranges_are_contiguous(self, size):
        """part_range yields back-to-back ranges ending at the object size."""
        plan = plan_parts(size)
        offset, first_size = plan.part_range(1)
        assert offset == 0
        assert first_size == (plan.part_size if plan.part_count > 1 else size)
        last_offset, last_size = plan.part_range(plan.part_count)
        assert last_offset + last_size == size


class TestPlanValues:
    """Specific plans."""

    def test_small_object_single_part(self):
        plan = plan_parts(1024)
        assert plan.part_count == 1
        assert plan.part_size == MIN_PART_SIZE
        assert plan.last_part_size == 1024

    def test_exact_multiple(self):
        """An exact multiple of the part size has a full last part."""
        plan = plan_parts(3 * MIN_PART_SIZE)
        assert plan.part_count == 3
        assert plan.last_part_size == MIN_PART_SIZE

    def test_five_tib_uses_large_parts(self):
        """5 TiB over 10000 parts rounds up to a multiple of 5 MiB."""
        plan = plan_parts(MAX_MULTIPART_OBJECT_SIZE)
        assert plan.part_size == 525 * MiB
        assert plan.part_count == 9987

    def test_copy_uses_copy_floor(self):
        plan = plan_parts(2 * GiB, is_copy=True)
        assert plan.part_size == MIN_COPY_PART_SIZE
        assert plan.part_count == 4

    def test_unknown_size_plans_largest_stream(self):
        """-1 plans for the largest object a stream can produce."""
        plan = plan_parts(-1)
        assert plan.total_size == MAX_STREAM_SIZE
        assert plan.part_size == MIN_PART_SIZE
        assert plan.part_count == MAX_PART_COUNT


class TestPlanErrors:
    """Sizes that cannot be planned."""

    def test_too_large(self):
        """Anything over 5 TiB is rejected."""
        with pytest.raises(EntityTooLarge) as exc_info:
            plan_parts(MAX_MULTIPART_OBJECT_SIZE + 1)
        assert exc_info.value.size == MAX_MULTIPART_OBJECT_SIZE + 1

    def test_zero(self):
        with pytest.raises(ConfigurationError):
            plan_parts(0)

    def test_negative_other_than_unknown(self):
        with pytest.raises(ConfigurationError):
            plan_parts(-2)

    def test_part_range_out_of_plan(self):
        """Part numbers outside the plan are rejected."""
        plan = plan_parts(MIN_PART_SIZE * 2)
        with pytest.raises(ConfigurationError):
            plan.part_range(0)
        with pytest.raises(ConfigurationError):
            plan.part_range(3)
