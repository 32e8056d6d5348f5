"""Streaming voice-coach backend: chat tokens and ordered sentence audio over SSE."""
