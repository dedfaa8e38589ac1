"""Test doubles: scripted tools and an in-memory transport."""

from .mock import Invocation, MockTool, RecordingTransport

__all__ = ["Invocation", "MockTool", "RecordingTransport"]
