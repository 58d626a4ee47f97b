"""Tests for sshp.lines."""

import pytest

from sshp.lines import LineSplitter


def test_partial_line_held_until_close():
    splitter = LineSplitter()

    assert splitter.feed(b"ab") == []
    assert splitter.feed(b"c\nde") == [b"abc"]
    assert splitter.close() == [b"de"]


def test_many_lines_in_one_chunk():
    splitter = LineSplitter()

    assert splitter.feed(b"one\ntwo\nthree\n") == [b"one", b"two", b"three"]
    assert splitter.close() == []


def test_empty_lines_are_kept():
    splitter = LineSplitter()

    assert splitter.feed(b"\n\nx\n") == [b"", b"", b"x"]


def test_newline_split_across_chunks():
    splitter = LineSplitter()

    assert splitter.feed(b"abc") == []
    assert splitter.feed(b"\n") == [b"abc"]
    assert splitter.feed(b"") == []
    assert splitter.close() == []


def test_long_line_across_many_chunks():
    splitter = LineSplitter()
    chunk = b"x" * 65536

    for _ in range(64):
        assert splitter.feed(chunk) == []
    lines = splitter.feed(b"y\nz")

    assert lines == [chunk * 64 + b"y"]
    assert splitter.close() == [b"z"]


def test_close_is_final():
    splitter = LineSplitter()
    splitter.feed(b"tail")

    assert splitter.close() == [b"tail"]
    assert splitter.closed
    assert splitter.close() == []
    with pytest.raises(ValueError):
        splitter.feed(b"more")
