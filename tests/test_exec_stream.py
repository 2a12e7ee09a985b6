"""Stream consumer and line splitting tests."""

from __future__ import annotations

import io

import pytest

from sysexec.lib.exec.stream import LineSplitter, StreamConsumer, consume, consume_and_wait


def _split(*chunks: bytes) -> list[bytes]:
    splitter = LineSplitter()
    lines: list[bytes] = []
    for chunk in chunks:
        lines.extend(splitter.feed(chunk))
    trailing = splitter.flush()
    if trailing is not None:
        lines.append(trailing)
    return lines


@pytest.mark.parametrize(
    ("chunks", "expected"),
    [
        pytest.param((b"a\nb\n",), [b"a", b"b"], id="lf"),
        pytest.param((b"a\r\nb\r\n",), [b"a", b"b"], id="crlf"),
        pytest.param((b"a\rb\r",), [b"a", b"b"], id="cr"),
        pytest.param((b"a\r", b"\nb"), [b"a", b"b"], id="crlf-split-across-chunks"),
        pytest.param((b"a\n\nb",), [b"a", b"", b"b"], id="blank-line"),
        pytest.param((b"par", b"tial"), [b"partial"], id="no-trailing-eol"),
        pytest.param((b"",), [], id="empty"),
    ],
)
def test_line_splitter(chunks: tuple[bytes, ...], expected: list[bytes]) -> None:
    assert _split(*chunks) == expected


def test_consumer_notifies_every_listener_with_tag(recorder) -> None:
    other: list[str] = []
    consumer = StreamConsumer(
        io.BytesIO(b"first\nsecond\nthird"),
        "STDOUT",
        [recorder, lambda tag, line: other.append(f"{tag}:{line}")],
        chunk_size=4,
    )
    consumer.start()
    consumer.join(timeout=5)

    assert not consumer.is_alive()
    assert consumer.name == "StreamConsumer-STDOUT"
    assert recorder.lines == [("STDOUT", "first"), ("STDOUT", "second"), ("STDOUT", "third")]
    assert other == ["STDOUT:first", "STDOUT:second", "STDOUT:third"]
    assert consumer.lines_streamed == 3


def test_consumer_survives_failing_listener(recorder) -> None:
    def _broken(tag: str, line: str) -> None:
        raise RuntimeError(f"listener broke on {line}")

    lines = consume_and_wait(io.BytesIO(b"one\ntwo\n"), "STDERR", _broken, recorder)

    assert lines == 2
    assert recorder.on("STDERR") == ["one", "two"]


def test_consumer_decodes_with_replacement(recorder) -> None:
    consume_and_wait(io.BytesIO("café\n".encode() + b"\xff\n"), "STDOUT", recorder)

    assert recorder.on("STDOUT") == ["café", "�"]


def test_consumer_honors_encoding(recorder) -> None:
    consumer = consume(
        io.BytesIO("naïve\n".encode("latin-1")), "STDOUT", recorder, encoding="latin-1"
    )
    consumer.join(timeout=5)

    assert recorder.on("STDOUT") == ["naïve"]


def test_consumer_swallows_read_errors(recorder) -> None:
    class _ExplodingStream(io.RawIOBase):
        def readable(self) -> bool:
            return True

        def readinto(self, buffer) -> int:  # noqa: ANN001
            raise OSError("pipe exploded")

    consumer = StreamConsumer(_ExplodingStream(), "STDOUT", [recorder])
    consumer.start()
    consumer.join(timeout=5)

    assert not consumer.is_alive()
    assert recorder.lines == []


def test_consumer_rejects_bad_chunk_size() -> None:
    with pytest.raises(ValueError, match="chunk_size"):
        StreamConsumer(io.BytesIO(b""), "STDOUT", chunk_size=0)
