from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, TextIO
from xml.sax.saxutils import escape, quoteattr

XHTML_NS = "http://www.w3.org/1999/xhtml"
XML_NS = "http://www.w3.org/XML/1998/namespace"


class ContentSink(ABC):
    """
    Consumer of the structured event stream produced by an OCR job.

    Events arrive in document order. `attributes` maps qualified attribute
    names to values.
    """

    def start_document(self) -> None:
        pass

    def end_document(self) -> None:
        pass

    def start_prefix_mapping(self, prefix: str, uri: str) -> None:
        pass

    def end_prefix_mapping(self, prefix: str) -> None:
        pass

    @abstractmethod
    def start_element(
        self, uri: str, local_name: str, qname: str, attributes: Mapping[str, str]
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def end_element(self, uri: str, local_name: str, qname: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def characters(self, text: str) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class StructuredEvent:
    kind: str  # start_document | end_document | start_element | end_element | characters
    uri: str = ""
    local_name: str = ""
    qname: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    text: str = ""


class EventRecorder(ContentSink):
    """Keeps every event in memory. Handy for callers that post-process OCR output."""

    def __init__(self) -> None:
        self.events: list[StructuredEvent] = []

    def start_document(self) -> None:
        self.events.append(StructuredEvent(kind="start_document"))

    def end_document(self) -> None:
        self.events.append(StructuredEvent(kind="end_document"))

    def start_element(
        self, uri: str, local_name: str, qname: str, attributes: Mapping[str, str]
    ) -> None:
        self.events.append(
            StructuredEvent(
                kind="start_element",
                uri=uri,
                local_name=local_name,
                qname=qname,
                attributes=dict(attributes),
            )
        )

    def end_element(self, uri: str, local_name: str, qname: str) -> None:
        self.events.append(
            StructuredEvent(kind="end_element", uri=uri, local_name=local_name, qname=qname)
        )

    def characters(self, text: str) -> None:
        self.events.append(StructuredEvent(kind="characters", text=text))

    def text(self) -> str:
        return "".join(e.text for e in self.events if e.kind == "characters")

    def started_elements(self) -> list[str]:
        return [e.local_name for e in self.events if e.kind == "start_element"]


class XhtmlWriter(ContentSink):
    """
    Serializes the event stream as XHTML.

    Character data and attribute values are escaped, so OCR text can never
    inject markup into the written document. Prefixes used by an element or its
    attributes are declared on that element unless an open ancestor already
    binds them to the same namespace.
    """

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._bindings: list[tuple[str, str]] = []
        self._declared: list[dict[str, str]] = [{"": XHTML_NS, "xml": XML_NS}]

    def start_document(self) -> None:
        self._out.write('<?xml version="1.0" encoding="UTF-8"?>\n')
        self._out.write(f'<html xmlns="{XHTML_NS}"><body>')

    def end_document(self) -> None:
        self._out.write("</body></html>\n")
        self._out.flush()

    def start_prefix_mapping(self, prefix: str, uri: str) -> None:
        self._bindings.append((prefix, uri))

    def end_prefix_mapping(self, prefix: str) -> None:
        for i in range(len(self._bindings) - 1, -1, -1):
            if self._bindings[i][0] == prefix:
                del self._bindings[i]
                break

    def start_element(
        self, uri: str, local_name: str, qname: str, attributes: Mapping[str, str]
    ) -> None:
        name = qname or local_name
        needed = {_prefix_of(name): uri or XHTML_NS}
        for attr_name in attributes:
            prefix = _prefix_of(attr_name)
            if prefix and prefix not in needed:
                bound = self._bound(prefix)
                if bound is not None:
                    needed[prefix] = bound

        declared = {p: u for p, u in needed.items() if self._in_scope(p) != u}
        self._declared.append(declared)

        decls = "".join(
            f" xmlns:{p}={quoteattr(u)}" if p else f" xmlns={quoteattr(u)}"
            for p, u in declared.items()
        )
        attrs = "".join(f" {n}={quoteattr(value)}" for n, value in attributes.items())
        self._out.write(f"<{name}{decls}{attrs}>")

    def end_element(self, uri: str, local_name: str, qname: str) -> None:
        if len(self._declared) > 1:
            self._declared.pop()
        self._out.write(f"</{qname or local_name}>")

    def characters(self, text: str) -> None:
        self._out.write(escape(text))

    def _bound(self, prefix: str) -> str | None:
        for p, u in reversed(self._bindings):
            if p == prefix:
                return u
        return None

    def _in_scope(self, prefix: str) -> str | None:
        for scope in reversed(self._declared):
            if prefix in scope:
                return scope[prefix]
        return None


def _prefix_of(name: str) -> str:
    prefix, sep, _ = name.partition(":")
    return prefix if sep else ""
