"""Event-based XML reading and writing for streaming metadata rewrites."""

from __future__ import annotations

import lzma
import xml.sax
import zipfile
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from enum import Enum
from typing import BinaryIO
from xml.sax.handler import (
    ContentHandler,
    LexicalHandler,
    feature_external_ges,
    feature_external_pes,
    feature_namespaces,
    property_lexical_handler,
)
from xml.sax.saxutils import escape

from p2proxy.errors import MalformedMetadataError

CHUNK_SIZE = 65536
XML_DECLARATION = "<?xml version='1.0' encoding='UTF-8'?>\n"

_ATTRIBUTE_ENTITIES = {
    "'": "&apos;",
    '"': "&quot;",
    "\n": "&#10;",
    "\r": "&#13;",
    "\t": "&#9;",
}


class EventType(Enum):
    START = "start"
    END = "end"
    TEXT = "text"
    PI = "pi"
    COMMENT = "comment"


@dataclass(frozen=True, slots=True)
class XmlEvent:
    """One parse event; attributes keep document order."""

    type: EventType
    name: str = ""
    attributes: tuple[tuple[str, str], ...] = ()
    data: str = ""

    def attribute(self, name: str) -> str | None:
        for key, value in self.attributes:
            if key == name:
                return value
        return None

    def with_attribute(self, name: str, value: str) -> XmlEvent:
        """Return a copy with `name` set to `value`, in place if it already exists."""

        updated = []
        found = False
        for key, current in self.attributes:
            if key == name:
                updated.append((key, value))
                found = True
            else:
                updated.append((key, current))
        if not found:
            updated.append((name, value))
        return replace(self, attributes=tuple(updated))

    def is_start(self, name: str) -> bool:
        return self.type is EventType.START and self.name == name

    def is_end(self, name: str) -> bool:
        return self.type is EventType.END and self.name == name

    @property
    def is_whitespace(self) -> bool:
        return self.type is EventType.TEXT and not self.data.strip()


def start_element(name: str, **attributes: str) -> XmlEvent:
    return XmlEvent(EventType.START, name, tuple(attributes.items()))


def end_element(name: str) -> XmlEvent:
    return XmlEvent(EventType.END, name)


class _EventCollector(ContentHandler, LexicalHandler):
    def __init__(self) -> None:
        super().__init__()
        self._events: list[XmlEvent] = []

    def drain(self) -> list[XmlEvent]:
        events, self._events = self._events, []
        return events

    def startElement(self, name, attrs):  # noqa: N802 - SAX API
        self._events.append(XmlEvent(EventType.START, name, tuple(attrs.items())))

    def endElement(self, name):  # noqa: N802
        self._events.append(XmlEvent(EventType.END, name))

    def characters(self, content):
        self._events.append(XmlEvent(EventType.TEXT, data=content))

    def ignorableWhitespace(self, whitespace):  # noqa: N802
        self._events.append(XmlEvent(EventType.TEXT, data=whitespace))

    def processingInstruction(self, target, data):  # noqa: N802
        self._events.append(XmlEvent(EventType.PI, target, data=data or ""))

    def comment(self, content):
        self._events.append(XmlEvent(EventType.COMMENT, data=content))


def iter_events(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[XmlEvent]:
    """Parse `stream` incrementally, yielding events as each chunk is fed.

    Raises MalformedMetadataError for unparseable or truncated input.
    """

    collector = _EventCollector()
    parser = xml.sax.make_parser()
    parser.setFeature(feature_namespaces, False)
    parser.setFeature(feature_external_ges, False)
    parser.setFeature(feature_external_pes, False)
    parser.setContentHandler(collector)
    parser.setProperty(property_lexical_handler, collector)

    fed = False
    try:
        for chunk in iter(lambda: stream.read(chunk_size), b""):
            fed = True
            parser.feed(chunk)
            yield from collector.drain()
        if not fed:
            raise MalformedMetadataError("Empty XML document")
        parser.close()
    except xml.sax.SAXException as exc:
        raise MalformedMetadataError(f"Malformed XML: {exc}") from exc
    except (lzma.LZMAError, zipfile.BadZipFile, EOFError, OSError) as exc:
        raise MalformedMetadataError(f"Unreadable metadata stream: {exc}") from exc
    yield from collector.drain()


class XmlEventWriter:
    """Serialize events as UTF-8, collapsing empty elements to `<name/>`."""

    def __init__(self, out: BinaryIO) -> None:
        self._out = out
        self._pending: XmlEvent | None = None
        self._depth = 0

    def start_document(self) -> None:
        self._emit(XML_DECLARATION)

    def write(self, event: XmlEvent) -> None:
        if self._pending is not None:
            if event.type is EventType.END and event.name == self._pending.name:
                self._emit(self._open_tag(self._pending) + "/>")
                self._pending = None
                self._close_level()
                return
            self._emit(self._open_tag(self._pending) + ">")
            self._pending = None

        if event.type is EventType.START:
            self._pending = event
            self._depth += 1
        elif event.type is EventType.END:
            self._emit(f"</{event.name}>")
            self._close_level()
        elif event.type is EventType.TEXT:
            self._emit(escape(event.data))
        elif event.type is EventType.PI:
            body = f"{event.name} {event.data}" if event.data else event.name
            self._emit(f"<?{body}?>")
            self._top_level_break()
        else:
            self._emit(f"<!--{event.data}-->")
            self._top_level_break()

    def write_all(self, events: Iterable[XmlEvent]) -> None:
        for event in events:
            self.write(event)

    def close(self) -> None:
        if self._pending is not None:
            self._emit(self._open_tag(self._pending) + ">")
            self._pending = None

    def _close_level(self) -> None:
        self._depth -= 1
        self._top_level_break()

    def _top_level_break(self) -> None:
        if self._depth == 0:
            self._emit("\n")

    @staticmethod
    def _open_tag(event: XmlEvent) -> str:
        parts = [event.name]
        for key, value in event.attributes:
            parts.append(f"{key}='{escape(value, _ATTRIBUTE_ENTITIES)}'")
        return "<" + " ".join(parts)

    def _emit(self, text: str) -> None:
        self._out.write(text.encode("utf-8", "xmlcharrefreplace"))
