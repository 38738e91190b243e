"""URL list extension: pick a URL from a file and insert it into the buffer.

Ctrl+U = open the URL list. The list is read from ~/.urls, a Lisp
association list of (name . url) pairs:

    (("The GNU Project" . "http://www.gnu.org/")
     ("The FSF" . "http://www.fsf.org/"))

In the list: Enter/i inserts <URL:url>, u inserts the bare url, f inserts
"name <URL:url>", t inserts the name. q or Escape cancels, ? shows the keys.

Settings are read from the shared data store when the list opens:
  url_list.file      path of the URL file
  url_list.sort_key  sort key for records (None keeps file order)
  url_list.title     title shown above the list
"""

import curses
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

# Ctrl+U (ASCII 21) opens the URL list
KEY_OPEN = 21
KEY_ESCAPE = 27

DEFAULT_FILE = Path.home() / ".urls"
DEFAULT_TITLE = "*URL List*"
SEPARATOR = " - "

_UNSET = object()


class UrlListError(Exception):
    """Base class for URL list errors."""


class FileNotFound(UrlListError, FileNotFoundError):
    """The URL file does not exist."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"URL file not found: {path}")
        self.path = path


class UnreadableFile(UrlListError, OSError):
    """The URL file exists but could not be read (permissions, I/O error)."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot read URL file {path}: {reason}")
        self.path = path


class MalformedFile(UrlListError, ValueError):
    """The URL file is not a list of (name . url) string pairs."""


class NoSelectionAtLine(UrlListError, LookupError):
    """An insert was asked for on a line with no URL."""

    def __init__(self, line: int) -> None:
        super().__init__(f"No URL on line {line + 1}")
        self.line = line


@dataclass(frozen=True)
class Record:
    name: str
    url: str


class Mode(Enum):
    ANGLE_BRACKETED = "angle_bracketed"
    NAKED = "naked"
    NAMED_ANGLE_BRACKETED = "named_angle_bracketed"
    NAME_ONLY = "name_only"


# Whitespace and ; comments are skipped. A dot only counts when it stands
# alone, so "a.b" is read as a symbol.
_TOKEN = re.compile(
    r"""
    (?P<skip>\s+|;[^\n]*)
    |(?P<open>\()
    |(?P<close>\))
    |(?P<dot>\.)(?=[\s()";]|$)
    |(?P<string>"(?:[^"\\]|\\.)*")
    |(?P<symbol>[^\s()";]+)
    """,
    re.VERBOSE | re.DOTALL,
)

# Backslash-newline continues a string without adding anything
_ESCAPES = {"n": "\n", "t": "\t", "\n": ""}


def _unescape(body: str) -> str:
    """Turn the inside of a Lisp string literal into its value."""
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body, flags=re.DOTALL)


def _position(text: str, offset: int) -> str:
    """Return a "line L, column C" description of offset (both 1-based)."""
    line = text.count("\n", 0, offset) + 1
    col = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return f"line {line}, column {col}"


def _tokenize(text: str) -> list[tuple[str, str, int]]:
    """Return a list of (kind, value, offset) tokens, skipping blanks and comments."""
    tokens = []
    pos = 0
    while pos < len(text):
        m = _TOKEN.match(text, pos)
        if m is None:
            raise MalformedFile(f"Unreadable text at {_position(text, pos)}")
        kind = m.lastgroup
        if kind == "string":
            tokens.append((kind, _unescape(m.group()[1:-1]), pos))
        elif kind != "skip":
            tokens.append((kind, m.group(), pos))
        pos = m.end()
    return tokens


def parse(text: str) -> list[Record]:
    """Parse a Lisp association list of (name . url) string pairs."""
    tokens = _tokenize(text)
    if not tokens:
        raise MalformedFile("URL file is empty")

    def expect(index: int, kind: str, what: str) -> str:
        """Return the value of token index, or fail if it is not of this kind."""
        if index >= len(tokens):
            raise MalformedFile(f"Unexpected end of file, expected {what}")
        tok_kind, value, offset = tokens[index]
        if tok_kind != kind:
            raise MalformedFile(f"Expected {what} at {_position(text, offset)}, got {value!r}")
        return value

    # nil is the empty list
    if tokens[0][0] == "symbol" and tokens[0][1] == "nil":
        i = 1
        records = []
    else:
        expect(0, "open", "'('")
        records = []
        i = 1
        # Each pair is exactly five tokens: ( "name" . "url" )
        while i < len(tokens) and tokens[i][0] != "close":
            expect(i, "open", "'(' starting a (name . url) pair")
            name = expect(i + 1, "string", "a name string")
            expect(i + 2, "dot", "'.'")
            url = expect(i + 3, "string", "a URL string")
            expect(i + 4, "close", "')' ending the pair")
            records.append(Record(name, url))
            i += 5
        expect(i, "close", "')' ending the list")
        i += 1

    if i < len(tokens):
        raise MalformedFile(f"Unexpected text after the list at {_position(text, tokens[i][2])}")
    return records


def load(path: str | Path) -> list[Record]:
    """
    Read and parse the URL file in one pass.
    Raises FileNotFound if it is missing, UnreadableFile if it cannot be read,
    and MalformedFile if it is not UTF-8 or not a list of pairs.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise FileNotFound(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedFile(f"URL file is not UTF-8 text: {exc}") from exc
    except OSError as exc:
        raise UnreadableFile(path, exc.strerror or str(exc)) from exc
    records = parse(text)
    logger.debug("Loaded %d URLs from %s", len(records), path)
    return records


def name_key(record: Record) -> str:
    """Default sort key: case-insensitive name."""
    return record.name.lower()


def sort_records(records: list[Record], key: Callable | None = name_key) -> list[Record]:
    """Return records in display order. sorted() is stable, so equal names keep file order."""
    if key is None:
        return list(records)
    return sorted(records, key=key)


def render(records: list[Record]) -> list[str]:
    """One line per record: the name padded to the widest name, then the URL."""
    if not records:
        return []
    width = max(len(r.name) for r in records)
    return [r.name.ljust(width) + SEPARATOR + r.url for r in records]


def _cursor_row(cursor: tuple[int, int] | int) -> int:
    """Row of a (row, col) cursor, or the cursor itself if it is already a row."""
    return cursor[0] if isinstance(cursor, tuple) else cursor


def resolve(cursor: tuple[int, int] | int, records: list[Record]) -> Record | None:
    """Return the record on the cursor's line, or None if that line has no record.

    cursor is a (row, col) tuple as returned by api.get_cursor(), or a row.
    """
    row = _cursor_row(cursor)
    if 0 <= row < len(records):
        return records[row]
    return None


def format_record(record: Record, mode: Mode) -> str:
    """Return the text to insert for record in the given mode."""
    match mode:
        case Mode.ANGLE_BRACKETED:
            return f"<URL:{record.url}>"
        case Mode.NAKED:
            return record.url
        case Mode.NAMED_ANGLE_BRACKETED:
            return f"{record.name} <URL:{record.url}>"
        case Mode.NAME_ONLY:
            return record.name
    raise ValueError(f"Unknown insertion mode: {mode!r}")


@dataclass(frozen=True)
class Config:
    path: Path = DEFAULT_FILE
    sort_key: Callable | None = name_key
    title: str = DEFAULT_TITLE

    @classmethod
    def from_api(cls, api) -> "Config":
        """Read url_list.* settings from the shared data store."""
        sort_key = api.get_data("url_list.sort_key", _UNSET)
        return cls(
            path=Path(api.get_data("url_list.file", DEFAULT_FILE)),
            sort_key=name_key if sort_key is _UNSET else sort_key,
            title=api.get_data("url_list.title", DEFAULT_TITLE),
        )


class State(Enum):
    CLOSED = "closed"
    OPEN = "open"


class Command(Enum):
    INSERT = "insert"
    INSERT_NAKED = "insert_naked"
    INSERT_NAMED = "insert_named"
    INSERT_NAME_ONLY = "insert_name_only"
    QUIT = "quit"
    HELP = "help"


_COMMAND_MODES = {
    Command.INSERT: Mode.ANGLE_BRACKETED,
    Command.INSERT_NAKED: Mode.NAKED,
    Command.INSERT_NAMED: Mode.NAMED_ANGLE_BRACKETED,
    Command.INSERT_NAME_ONLY: Mode.NAME_ONLY,
}


@dataclass
class Session:
    """Everything one open URL list needs: the records in display order,
    their rendered lines and the surface to insert into."""

    records: list[Record]
    origin: object
    title: str = DEFAULT_TITLE
    lines: list[str] = field(default_factory=list)


class Controller:
    """Open/close state machine for the URL list.

    The origin is any object with an insert(text) method; in the editor it is
    a BufferSurface wrapping the buffer that was active on Ctrl+U.
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self.state = State.CLOSED
        self.session: Session | None = None

    def open(self, origin, path: str | Path | None = None) -> Session:
        """Load, sort and render the URL file and start a session. Load errors leave the state alone."""
        # Re-opening from inside the list keeps inserting into the original buffer
        if self.state is State.OPEN and self.session is not None:
            origin = self.session.origin
        records = load(path if path is not None else self.config.path)
        records = sort_records(records, self.config.sort_key)
        self.session = Session(records, origin, self.config.title, render(records))
        self.state = State.OPEN
        logger.debug("Opened URL list with %d entries", len(records))
        return self.session

    def handle(self, command: Command, cursor: tuple[int, int] | int = 0) -> str | None:
        """Run one command. Returns the inserted text, or None if nothing was inserted."""
        if self.state is not State.OPEN:
            raise RuntimeError("URL list is not open")
        if command is Command.HELP:
            return None
        if command is Command.QUIT:
            self.close()
            return None

        mode = _COMMAND_MODES[command]
        record = resolve(cursor, self.session.records)
        if record is None:
            row = _cursor_row(cursor)
            logger.warning("No URL at line %d", row + 1)
            raise NoSelectionAtLine(row)
        text = format_record(record, mode)
        self.session.origin.insert(text)
        logger.info("Inserted %s", text)
        self.close()
        return text

    def close(self) -> None:
        """End the session. Safe to call when already closed."""
        self.state = State.CLOSED
        self.session = None


class BufferSurface:
    """The editor buffer as an insertion target."""

    def __init__(self, api) -> None:
        self.api = api

    def insert(self, text: str) -> None:
        """Splice text into the buffer at the cursor and move the cursor past it."""
        lines = self.api.get_lines()
        row, col = self.api.get_cursor()

        # Split the current line at the cursor position
        before = lines[row][:col]
        after = lines[row][col:]

        # First inserted line joins the text before the cursor,
        # the last one joins the text after it
        inserted = text.split("\n")
        new_lines = lines[:row] + [before + inserted[0]] + inserted[1:]
        new_lines[-1] = new_lines[-1] + after

        # Add the remaining original lines
        new_lines.extend(lines[row + 1:])
        self.api.replace_lines(new_lines)

        # Move cursor to end of inserted text
        end_row = row + len(inserted) - 1
        end_col = len(inserted[-1])
        if len(inserted) == 1:
            end_col += col  # Same line, offset by original position
        self.api.set_cursor(end_row, end_col)


KEY_COMMANDS = {
    curses.KEY_ENTER: Command.INSERT,
    10: Command.INSERT,
    13: Command.INSERT,
    ord("i"): Command.INSERT,
    ord("u"): Command.INSERT_NAKED,
    ord("f"): Command.INSERT_NAMED,
    ord("t"): Command.INSERT_NAME_ONLY,
    ord("q"): Command.QUIT,
    KEY_ESCAPE: Command.QUIT,
    ord("?"): Command.HELP,
}

HINT = "Enter: insert | ?: keys | q: quit"


def help_text() -> str:
    """Key bindings shown in the hint line after '?'."""
    return "Enter/i <URL:url> | u url | f name <URL:url> | t name | q/Esc quit"


def _draw(win, size: tuple[int, int], session: Session, selected: int, scroll_y: int,
          hint: str, attr_normal: int, attr_highlight: int) -> None:
    """Draw the title, the visible part of the list and the hint line."""
    height, width = size
    # Title on the first row, hint on the last, list in between
    list_height = max(1, height - 2)
    win.erase()
    try:
        win.addnstr(0, 0, session.title[: width - 1].ljust(width - 1), width - 1, attr_highlight)
    except curses.error:
        pass

    for i in range(list_height):
        idx = scroll_y + i
        if idx >= len(session.lines):
            break
        # One line per record; trim if too long
        display = session.lines[idx][: width - 1].ljust(width - 1)
        attr = attr_highlight if idx == selected else attr_normal
        try:
            win.addnstr(i + 1, 0, display, width - 1, attr)
        except curses.error:
            pass

    try:
        win.addnstr(height - 1, 0, hint[: width - 1], width - 1, attr_normal)
    except curses.error:
        pass
    win.refresh()


def _run_listing(api, controller: Controller) -> str | None:
    """
    Show the open URL list and handle keys until a URL is inserted or the list is closed.
    Returns the inserted text, or None if cancelled.
    """
    win = api.get_win()
    attr_normal = api.get_data("theme.ui", 0)
    attr_highlight = api.get_data("theme.ui_active", curses.A_REVERSE)

    selected = 0
    scroll_y = 0  # First visible record
    hint = HINT

    while controller.state is State.OPEN:
        session = controller.session
        height, _ = api.get_size()
        list_height = max(1, height - 2)
        last = max(0, len(session.lines) - 1)
        selected = min(max(0, selected), last)

        # Keep selected row visible
        if selected < scroll_y:
            scroll_y = selected
        if selected >= scroll_y + list_height:
            scroll_y = selected - list_height + 1

        _draw(win, api.get_size(), session, selected, scroll_y, hint, attr_normal, attr_highlight)
        key = win.getch()
        hint = HINT

        if key in (curses.KEY_UP, ord("k")):
            selected -= 1
        elif key in (curses.KEY_DOWN, ord("j")):
            selected += 1
        elif key in (curses.KEY_HOME, ord("g")):
            selected = 0
        elif key in (curses.KEY_END, ord("G")):
            selected = last
        elif key == KEY_OPEN:
            controller.open(None)
            selected = 0
            scroll_y = 0
        elif key in KEY_COMMANDS:
            command = KEY_COMMANDS[key]
            if command is Command.HELP:
                hint = help_text()
            try:
                result = controller.handle(command, selected)
            except NoSelectionAtLine as exc:
                # Stay in the list and say why nothing happened
                hint = str(exc)
                continue
            if controller.state is State.CLOSED:
                return result
    return None


def _on_key(event: str, payload: dict) -> bool:
    """If the user presses Ctrl+U, open the URL list."""
    if payload.get("key") != KEY_OPEN:
        return False
    api = payload["api"]
    controller = Controller(Config.from_api(api))
    try:
        controller.open(BufferSurface(api))
        inserted = _run_listing(api, controller)
    except UrlListError as exc:
        logger.error("%s", exc)
        api.set_message(str(exc))
        return True
    finally:
        controller.close()
    if inserted is None:
        api.set_message("URL list closed.")
    else:
        api.set_message(f"Inserted {inserted}")
    return True  # We handled the key


def setup(register_hook) -> None:
    """Register the Ctrl+U key hook before the editor's default key handling."""
    register_hook(5, _on_key, event="key")
