import io

import pytest

from dufs.http_utils import length_limited_stream


def test_stops_at_limit():
    data = b"This is index.html"
    chunks = list(length_limited_stream(io.BytesIO(data), 7, chunk_size=3))
    assert b"".join(chunks) == data[:7]
    assert all(len(chunk) <= 3 for chunk in chunks)


def test_stops_at_eof_when_limit_larger():
    data = b"abcdef"
    assert b"".join(length_limited_stream(io.BytesIO(data), 100)) == data


def test_zero_limit_reads_nothing():
    reader = io.BytesIO(b"abc")
    assert list(length_limited_stream(reader, 0)) == []
    assert reader.tell() == 0


def test_does_not_read_past_limit():
    reader = io.BytesIO(b"0123456789")
    list(length_limited_stream(reader, 4))
    assert reader.read() == b"456789"


def test_rejects_bad_arguments():
    with pytest.raises(ValueError):
        list(length_limited_stream(io.BytesIO(b""), 1, chunk_size=0))
    with pytest.raises(ValueError):
        list(length_limited_stream(io.BytesIO(b""), -1))


def test_reader_error_propagates():
    class Broken:
        def read(self, size):
            raise OSError("disk gone")

    with pytest.raises(OSError, match="disk gone"):
        list(length_limited_stream(Broken(), 10))