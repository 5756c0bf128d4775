"""Tests for report parameter coercion."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from jasper_reports_mcp.core.errors import ErrorCode, NormalizedError
from jasper_reports_mcp.core.parameters import format_timestamp, transform_parameters


class TestTransformParameters:
    """Value coercion into the wire shape."""

    def test_mixed_values(self):
        result = transform_parameters({
            "a": 123,
            "b": datetime(2023, 1, 1, tzinfo=timezone.utc),
            "c": ["x", "y"],
            "d": {"k": "v"},
        })
        assert result == {"a": "123", "b": "2023-01-01T00:00:00.000Z", "c": ["x", "y"], "d": '{"k":"v"}'}

    def test_strings_unchanged(self):
        assert transform_parameters({"s": "hello"}) == {"s": "hello"}

    def test_booleans(self):
        assert transform_parameters({"t": True, "f": False}) == {"t": "true", "f": "false"}

    def test_numbers(self):
        result = transform_parameters({"i": -7, "f": 1.5, "whole": 2.0, "d": Decimal("10.25")})
        assert result == {"i": "-7", "f": "1.5", "whole": "2", "d": "10.25"}

    def test_none_is_omitted(self):
        assert transform_parameters({"keep": "x", "drop": None}) == {"keep": "x"}

    def test_list_elements_transformed_and_none_dropped(self):
        assert transform_parameters({"ids": [1, None, True, "z"]}) == {"ids": ["1", "true", "z"]}

    def test_nested_list_keeps_shape(self):
        assert transform_parameters({"grid": [[1, 2], [3]]}) == {"grid": [["1", "2"], ["3"]]}

    def test_dict_with_dates_is_compact_json(self):
        result = transform_parameters({"range": {"from": date(2024, 3, 1), "n": [1, 2]}})
        assert result == {"range": '{"from":"2024-03-01T00:00:00.000Z","n":[1,2]}'}

    def test_empty_and_none_mapping(self):
        assert transform_parameters({}) == {}
        assert transform_parameters(None) == {}

    def test_input_not_mutated(self):
        params = {"a": [1, 2], "b": None}
        transform_parameters(params)
        assert params == {"a": [1, 2], "b": None}

    def test_circular_list_is_internal_error(self):
        loop = [1]
        loop.append(loop)
        with pytest.raises(NormalizedError) as exc_info:
            transform_parameters({"loop": loop})
        assert exc_info.value.code == ErrorCode.INTERNAL_ERROR

    def test_circular_dict_is_internal_error(self):
        loop = {}
        loop["self"] = loop
        with pytest.raises(NormalizedError) as exc_info:
            transform_parameters({"loop": loop})
        assert exc_info.value.code == ErrorCode.INTERNAL_ERROR

    def test_unserializable_object_is_internal_error(self):
        with pytest.raises(NormalizedError) as exc_info:
            transform_parameters({"obj": object()})
        assert exc_info.value.details["parameter"] == "obj"


class TestFormatTimestamp:
    def test_naive_datetime_taken_as_utc(self):
        assert format_timestamp(datetime(2023, 6, 15, 12, 30, 45, 123456)) == "2023-06-15T12:30:45.123Z"

    def test_offset_converted_to_utc(self):
        value = datetime(2023, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2023-01-01T00:00:00.000Z"

    def test_date_is_midnight(self):
        assert format_timestamp(date(2023, 1, 1)) == "2023-01-01T00:00:00.000Z"
