"""Command parsers: fixed grammar, AI adapter and the fallback combinator."""

from .outcome import Outcome, first_success
from .lexical import LexicalParser, parse_quantity, parse_number, NUMBER_WORDS
from .ai_parser import AIParser, decode_parse_reply, decode_row_reply, static_suggestion

__all__ = [
    "Outcome", "first_success",
    "LexicalParser", "parse_quantity", "parse_number", "NUMBER_WORDS",
    "AIParser", "decode_parse_reply", "decode_row_reply", "static_suggestion"
]
