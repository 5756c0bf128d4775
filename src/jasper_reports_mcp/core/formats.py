"""Catalog of report output formats supported by JasperReports Server."""

from __future__ import annotations

from typing import Iterator, Optional

from .errors import field_error
from .models import OutputFormatDescriptor

OUTPUT_FORMATS: tuple[OutputFormatDescriptor, ...] = (
    OutputFormatDescriptor(format="pdf", mime_type="application/pdf", extension="pdf", binary=True),
    OutputFormatDescriptor(format="html", mime_type="text/html", extension="html", binary=False),
    OutputFormatDescriptor(
        format="xlsx",
        mime_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        extension="xlsx",
        binary=True,
    ),
    OutputFormatDescriptor(format="xls", mime_type="application/vnd.ms-excel", extension="xls", binary=True),
    OutputFormatDescriptor(format="csv", mime_type="text/csv", extension="csv", binary=False),
    OutputFormatDescriptor(format="rtf", mime_type="application/rtf", extension="rtf", binary=True),
    OutputFormatDescriptor(
        format="docx",
        mime_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        extension="docx",
        binary=True,
    ),
    OutputFormatDescriptor(format="odt", mime_type="application/vnd.oasis.opendocument.text", extension="odt", binary=True),
    OutputFormatDescriptor(format="ods", mime_type="application/vnd.oasis.opendocument.spreadsheet", extension="ods", binary=True),
    OutputFormatDescriptor(format="xml", mime_type="application/xml", extension="xml", binary=False),
)


class OutputFormatRegistry:
    """Read-only lookup over a fixed, ordered set of format descriptors."""

    def __init__(self, formats: tuple[OutputFormatDescriptor, ...] = OUTPUT_FORMATS):
        self._formats = formats
        self._by_format = {d.format: d for d in formats}
        if len(self._by_format) != len(formats) or any(d.format != d.format.lower() for d in formats):
            raise ValueError("Output format keys must be unique and lowercase")

    def __iter__(self) -> Iterator[OutputFormatDescriptor]:
        return iter(self._formats)

    def __contains__(self, output_format: object) -> bool:
        return isinstance(output_format, str) and output_format.lower() in self._by_format

    def list(self) -> list[OutputFormatDescriptor]:
        return list(self._formats)

    def resolve(self, output_format: Optional[str]) -> OutputFormatDescriptor:
        """Return the descriptor for ``output_format`` (case-insensitive)."""
        descriptor = self._by_format.get((output_format or "").strip().lower())
        if descriptor is None:
            raise field_error(
                "output_format",
                f"Unsupported output format: {output_format!r}",
                value=output_format,
                constraint="one of: " + ", ".join(self._by_format),
            )
        return descriptor

    def find_by_content_type(self, content_type: Optional[str]) -> Optional[OutputFormatDescriptor]:
        """Match a response Content-Type header, ignoring parameters like charset."""
        if not content_type:
            return None
        mime = content_type.split(";", 1)[0].strip().lower()
        return next((d for d in self._formats if d.mime_type == mime), None)


default_registry = OutputFormatRegistry()
