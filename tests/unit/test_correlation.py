"""
Unit tests for merge correlation utilities.
"""

import logging
import threading

import pytest

from src.utils.correlation import (
    CORRELATION_HEADER,
    CorrelationContext,
    attach_correlation_header,
    clear_correlation_id,
    correlation_id_filter,
    generate_merge_id,
    get_correlation_id,
    set_correlation_id,
)


class TestMergeId:
    """Test merge identifier generation and binding."""

    def test_generate_is_unique_uuid(self):
        first = generate_merge_id()
        second = generate_merge_id()

        assert first != second
        assert len(first) == 36

    def test_set_and_get(self):
        set_correlation_id("m-1")

        assert get_correlation_id() == "m-1"

    def test_clear(self):
        set_correlation_id("m-1")
        clear_correlation_id()

        assert get_correlation_id() is None

    @pytest.mark.parametrize("value", ["", None, 42])
    def test_set_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            set_correlation_id(value)

    def test_not_shared_with_new_threads(self):
        set_correlation_id("m-main")
        seen = []

        thread = threading.Thread(target=lambda: seen.append(get_correlation_id()))
        thread.start()
        thread.join()

        assert seen == [None]


class TestCorrelationContext:
    """Test the correlation context manager."""

    def test_binds_given_id(self):
        with CorrelationContext("m-1") as merge_id:
            assert merge_id == "m-1"
            assert get_correlation_id() == "m-1"

        assert get_correlation_id() is None

    def test_generates_id(self):
        with CorrelationContext() as merge_id:
            assert get_correlation_id() == merge_id
            assert len(merge_id) == 36

    def test_nested_contexts_restore_outer(self):
        with CorrelationContext("outer"):
            with CorrelationContext("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"

    def test_restores_on_exception(self):
        with pytest.raises(RuntimeError):
            with CorrelationContext("m-1"):
                raise RuntimeError("boom")

        assert get_correlation_id() is None


class TestLoggingAndHeaders:

    def make_record(self):
        return logging.LogRecord("test", logging.INFO, __file__, 1, "msg", None, None)

    def test_filter_stamps_merge_id(self):
        record = self.make_record()

        with CorrelationContext("m-1"):
            assert correlation_id_filter(record) is True

        assert record.merge_id == "m-1"

    def test_filter_outside_merge(self):
        record = self.make_record()

        correlation_id_filter(record)

        assert record.merge_id == "N/A"

    def test_header_attached_during_merge(self):
        with CorrelationContext("m-1"):
            headers = attach_correlation_header({"Accept": "application/json"})

        assert headers == {"Accept": "application/json", CORRELATION_HEADER: "m-1"}

    def test_header_omitted_outside_merge(self):
        original = {"Accept": "application/json"}

        headers = attach_correlation_header(original)

        assert headers == original
        assert headers is not original
