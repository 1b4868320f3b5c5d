from __future__ import annotations

import codecs
from pathlib import Path
from typing import BinaryIO
from xml.sax import handler as sax_handler
from xml.sax import SAXParseException, make_parser
from xml.sax.handler import ContentHandler, EntityResolver
from xml.sax.xmlreader import AttributesNSImpl

from .contracts import OutputFormat
from .errors import MalformedOutput
from .sink import XHTML_NS, XML_NS, ContentSink

CONTAINER_ELEMENT = "div"
CONTAINER_ATTRIBUTES = {"class": "ocr"}

# Present only to make hOCR a valid XHTML document.
ELIDED_ELEMENTS = frozenset({"html", "head", "title", "meta", "body"})


class _OfflineEntityResolver(EntityResolver):
    def resolveEntity(self, publicId, systemId):
        raise MalformedOutput(
            "external entity reference in OCR output refused",
            detail={"public_id": publicId, "system_id": systemId},
        )


class _PassThroughHandler(ContentHandler):
    """
    Forwards SAX events to a sink, dropping the start/end events of the
    wrapper-only elements. Their text and all their other descendants pass
    through untouched.
    """

    def __init__(self, sink: ContentSink) -> None:
        super().__init__()
        self._sink = sink
        # (prefix, uri) in declaration order; the default namespace is unprefixed.
        self._bindings: list[tuple[str, str]] = [("xml", XML_NS)]

    def startPrefixMapping(self, prefix, uri):
        self._sink.start_prefix_mapping(prefix or "", uri or "")
        if prefix:
            self._bindings.append((prefix, uri))

    def endPrefixMapping(self, prefix):
        self._sink.end_prefix_mapping(prefix or "")
        if not prefix:
            return
        for i in range(len(self._bindings) - 1, -1, -1):
            if self._bindings[i][0] == prefix:
                del self._bindings[i]
                break

    def _qname(self, uri: str | None, local: str) -> str:
        if uri:
            for prefix, bound in reversed(self._bindings):
                if bound == uri:
                    return f"{prefix}:{local}"
        return local

    def startElementNS(self, name, qname, attrs: AttributesNSImpl):
        uri, local = name
        if local in ELIDED_ELEMENTS:
            return
        attributes = {
            self._qname(attr_uri, attr_local): value
            for (attr_uri, attr_local), value in attrs.items()
        }
        self._sink.start_element(uri or "", local, self._qname(uri, local), attributes)

    def endElementNS(self, name, qname):
        uri, local = name
        if local in ELIDED_ELEMENTS:
            return
        self._sink.end_element(uri or "", local, self._qname(uri, local))

    def characters(self, content):
        self._sink.characters(content)


class OutputReassembler:
    """
    Turns a Tesseract output file into sink events inside one
    `<div class="ocr">` container.
    """

    def __init__(self, *, chunk_size: int = 1024) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self.chunk_size = chunk_size

    def reassemble(self, stream: BinaryIO, output_format: OutputFormat, sink: ContentSink) -> None:
        self._start_container(sink)
        if output_format is OutputFormat.STRUCTURED_MARKUP:
            self._emit_markup(stream, sink)
        else:
            self._emit_text(stream, sink)
        self._end_container(sink)

    def reassemble_file(
        self, output_file: Path | None, output_format: OutputFormat, sink: ContentSink
    ) -> bool:
        """
        Reassemble `output_file` if it exists. A missing file still yields an
        (empty) container. Returns whether the file was found.
        """

        if output_file is None or not output_file.exists():
            self._start_container(sink)
            self._end_container(sink)
            return False
        with output_file.open("rb") as f:
            self.reassemble(f, output_format, sink)
        return True

    def _start_container(self, sink: ContentSink) -> None:
        sink.start_element(XHTML_NS, CONTAINER_ELEMENT, CONTAINER_ELEMENT, dict(CONTAINER_ATTRIBUTES))

    def _end_container(self, sink: ContentSink) -> None:
        sink.end_element(XHTML_NS, CONTAINER_ELEMENT, CONTAINER_ELEMENT)

    def _emit_text(self, stream: BinaryIO, sink: ContentSink) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        for raw in iter(lambda: stream.read(self.chunk_size), b""):
            pending += decoder.decode(raw)
            while len(pending) >= self.chunk_size:
                sink.characters(pending[: self.chunk_size])
                pending = pending[self.chunk_size :]
        pending += decoder.decode(b"", final=True)
        if pending:
            sink.characters(pending)

    def _emit_markup(self, stream: BinaryIO, sink: ContentSink) -> None:
        parser = make_parser()
        parser.setFeature(sax_handler.feature_namespaces, True)
        # Never fetch DTDs or external entities (hOCR declares a remote DTD).
        parser.setFeature(sax_handler.feature_external_ges, False)
        parser.setFeature(sax_handler.feature_external_pes, False)
        parser.setEntityResolver(_OfflineEntityResolver())
        parser.setContentHandler(_PassThroughHandler(sink))
        try:
            parser.parse(stream)
        except SAXParseException as e:
            raise MalformedOutput(
                f"OCR markup output is not well-formed: {e.getMessage()}",
                detail={"line": e.getLineNumber(), "column": e.getColumnNumber()},
            ) from e
