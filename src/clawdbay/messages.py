"""Textual message objects posted by dashboard workers back to the app."""

from __future__ import annotations

from textual.message import Message

from clawdbay.dashboard.refresh import AddResult, RefreshResult


class RefreshCompleted(Message):
    def __init__(self, *, result: RefreshResult) -> None:
        self.result = result
        super().__init__()


class AddCompleted(Message):
    def __init__(self, *, result: AddResult) -> None:
        self.result = result
        super().__init__()


class ConfigChanged(Message):
    pass
