"""Tests for argument validation helpers."""

import pytest

from s3courier.errors import (
    ConfigurationError,
    InvalidBucketName,
    InvalidExpiry,
    InvalidObjectName,
    InvalidPartNumber,
)
from s3courier.validation import (
    validate_bucket_name,
    validate_expiry,
    validate_object_key,
    validate_part_number,
)


class TestBucketName:
    """Tests for validate_bucket_name()."""

    @pytest.mark.parametrize("name", ["abc", "my-bucket", "logs.2026", "a" * 63, "0bucket9"])
    def test_valid(self, name):
        validate_bucket_name(name)

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "ab",
            "a" * 64,
            "MyBucket",
            "under_score",
            "-leading",
            "trailing-",
            "192.168.1.1",
            "double..dot",
        ],
    )
    def test_invalid(self, name):
        with pytest.raises(InvalidBucketName) as exc_info:
            validate_bucket_name(name)
        assert exc_info.value.bucket == name

    def test_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            validate_bucket_name("x")


class TestObjectKey:
    def test_valid(self):
        validate_object_key("dir/sub/file name.txt")
        validate_object_key("x" * 1024)

    def test_empty(self):
        with pytest.raises(InvalidObjectName):
            validate_object_key("")

    def test_too_long_in_utf8(self):
        """The limit counts encoded bytes, not characters."""
        with pytest.raises(InvalidObjectName):
            validate_object_key("é" * 513)


class TestPartNumber:
    @pytest.mark.parametrize("number", [1, 5000, 10000])
    def test_valid(self, number):
        validate_part_number(number)

    @pytest.mark.parametrize("number", [0, -1, 10001])
    def test_invalid(self, number):
        with pytest.raises(InvalidPartNumber) as exc_info:
            validate_part_number(number)
        assert exc_info.value.part_number == number


class TestExpiry:
    @pytest.mark.parametrize("expires", [1, 3600, 604800])
    def test_valid(self, expires):
        validate_expiry(expires)

    @pytest.mark.parametrize("expires", [0, -1, 604801])
    def test_invalid(self, expires):
        with pytest.raises(InvalidExpiry) as exc_info:
            validate_expiry(expires)
        assert exc_info.value.maximum == 604800
