"""Frontend package - converts schemas and headers to IR."""

from .cheader import parse_cheader
from .document import ParseOptions, ParseResult, load_document, read_document
from .openapi import parse_openapi
