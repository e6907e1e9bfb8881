"""Streaming: incremental JSON assembly and SSE framing."""

from .assembler import AssembledItem, AssemblerState, IncrementalAssembler

__all__ = ["AssembledItem", "AssemblerState", "IncrementalAssembler"]
