from __future__ import annotations

from pathlib import Path

import pytest


class FakeWin:
    """Records drawn rows and replays a scripted sequence of keys."""

    def __init__(self, keys):
        self.keys = list(keys)
        self.rows: dict[int, str] = {}

    def erase(self) -> None:
        self.rows = {}

    def addnstr(self, y, x, text, n, attr=0) -> None:
        self.rows[y] = text[:n]

    def refresh(self) -> None:
        pass

    def getch(self) -> int:
        return self.keys.pop(0)


class FakeApi:
    """Just enough of the editor api for the URL list extension."""

    def __init__(self, lines=None, cursor=(0, 0), keys=(), data=None, size=(24, 80)):
        self.lines = list(lines or [""])
        self.cursor = cursor
        self.data = dict(data or {})
        self.message = ""
        self.win = FakeWin(keys)
        self.size = size

    def get_lines(self):
        return list(self.lines)

    def replace_lines(self, lines, dirty=True):
        self.lines = list(lines)

    def get_cursor(self):
        return self.cursor

    def set_cursor(self, row, col):
        self.cursor = (row, col)

    def get_data(self, key, default=None):
        return self.data.get(key, default)

    def set_message(self, message):
        self.message = message

    def get_win(self):
        return self.win

    def get_size(self):
        return self.size


@pytest.fixture
def url_file(tmp_path: Path):
    def write(content: str) -> Path:
        path = tmp_path / "urls.el"
        path.write_text(content, encoding="utf-8")
        return path

    return write


@pytest.fixture
def make_api():
    return FakeApi
