"""Tests for the streaming XML reader and writer."""

from __future__ import annotations

import io

import pytest

from p2proxy.errors import MalformedMetadataError
from p2proxy.metadata.events import EventType, XmlEventWriter, iter_events, start_element


def _rewrite(data: bytes, chunk_size: int = 65536) -> bytes:
    out = io.BytesIO()
    writer = XmlEventWriter(out)
    writer.start_document()
    writer.write_all(iter_events(io.BytesIO(data), chunk_size=chunk_size))
    writer.close()
    return out.getvalue()


def test_round_trip_preserves_structure_and_attribute_order():
    source = (
        b"<?xml version='1.0' encoding='UTF-8'?>\n"
        b"<?artifactRepository version='1.1.0'?>\n"
        b"<repository name='Example' type='simple' version='1'>\n"
        b"  <properties size='1'>\n"
        b"    <property name='p2.timestamp' value='1'></property>\n"
        b"  </properties>\n"
        b"  <!-- generated -->\n"
        b"  <description>Tools &amp; &lt;things&gt;</description>\n"
        b"</repository>\n"
    )

    result = _rewrite(source).decode("utf-8")

    assert result.startswith("<?xml version='1.0' encoding='UTF-8'?>\n<?artifactRepository version='1.1.0'?>\n")
    assert "<repository name='Example' type='simple' version='1'>" in result
    assert "<property name='p2.timestamp' value='1'/>" in result
    assert "<!-- generated -->" in result
    assert "<description>Tools &amp; &lt;things&gt;</description>" in result
    assert result.endswith("</repository>\n")


def test_output_is_stable_across_chunk_sizes():
    source = b"<a x='1'><b y='&quot;q&quot;'/>" + b"<c>text</c>" * 50 + b"</a>"

    assert _rewrite(source, chunk_size=7) == _rewrite(source)
    assert _rewrite(_rewrite(source)) == _rewrite(source)


def test_attribute_values_are_escaped():
    out = io.BytesIO()
    writer = XmlEventWriter(out)
    writer.write(start_element("child", location="a'b&c<d"))
    writer.close()

    assert out.getvalue() == b"<child location='a&apos;b&amp;c&lt;d'>"


def test_event_helpers():
    event = start_element("children", size="2")

    assert event.type is EventType.START
    assert event.is_start("children")
    assert event.attribute("size") == "2"
    assert event.with_attribute("size", "5").attributes == (("size", "5"),)
    assert event.with_attribute("extra", "x").attributes == (("size", "2"), ("extra", "x"))


@pytest.mark.parametrize("data", [b"<a><b></a>", b"", b"<a>unterminated"])
def test_malformed_input_raises(data):
    with pytest.raises(MalformedMetadataError):
        list(iter_events(io.BytesIO(data)))
