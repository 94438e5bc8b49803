"""Tests for summary models."""

from datetime import timedelta

import pytest

from conftest import at
from rollup.errors import InvalidRangeError
from rollup.models import Filter, Summary, Window, format_duration


def summary(start, end, total, **breakdown):
    return Summary(
        "alice",
        Window(at(start), at(end)),
        timedelta(seconds=total),
        {key.replace("__", ":"): timedelta(seconds=v) for key, v in breakdown.items()},
    )


class TestMerge:

    def test_merge_adds_buckets(self):
        merged = summary(0, 60, 60, project__foo=60).merge(summary(60, 90, 30, project__foo=10, project__bar=20))

        assert merged.window == Window(at(0), at(90))
        assert merged.total == timedelta(seconds=90)
        assert merged.by_dimension("project") == {"foo": timedelta(seconds=70), "bar": timedelta(seconds=20)}

    def test_merge_requires_contiguous_windows(self):
        with pytest.raises(ValueError):
            summary(0, 60, 0).merge(summary(61, 90, 0))

    def test_merge_requires_same_identity(self):
        other = Summary.empty("bob", Window(at(60), at(90)))
        with pytest.raises(ValueError):
            summary(0, 60, 0).merge(other)


class TestWindow:

    def test_validate(self):
        with pytest.raises(InvalidRangeError):
            Window(at(10), at(5)).validate()

    def test_clamp(self):
        window = Window(at(0), at(90))
        assert window.clamp(at(-10), at(10)) == timedelta(seconds=10)
        assert window.clamp(at(80), at(200)) == timedelta(seconds=10)
        assert window.clamp(at(100), at(200)) == timedelta(0)


class TestFormatDuration:

    @pytest.mark.parametrize("seconds,text", [
        (0, "0 secs"),
        (1, "1 sec"),
        (59, "59 secs"),
        (90, "1 min"),
        (3600, "1 hr"),
        (5400, "1 hr 30 mins"),
        (7260, "2 hrs 1 min"),
    ])
    def test_format(self, seconds, text):
        assert format_duration(timedelta(seconds=seconds)) == text


def test_to_dict_uses_seconds():
    data = summary(0, 90, 90, project__foo=60).to_dict()
    assert data["total_seconds"] == 90.0
    assert data["breakdown"] == {"project:foo": 60.0}
    assert data["range"]["open_ended"] is False


class TestFilterParse:

    def test_parse(self):
        assert Filter.parse("project: foo:mobile") == Filter("project", "foo:mobile")
        assert Filter.parse("project:foo").key == "project:foo"

    @pytest.mark.parametrize("text", ["project", "project:", ":foo", ""])
    def test_malformed(self, text):
        with pytest.raises(ValueError):
            Filter.parse(text)
