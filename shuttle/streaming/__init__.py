"""Streaming package - re-exports the element assembler."""

from .assembler import TEXT, Element, StreamAssembler, parse_attributes

__all__ = ["TEXT", "Element", "StreamAssembler", "parse_attributes"]
