"""
INI handling for Rainmeter configuration files.

Two ways of reading are provided:

read_config(path)
    Generic parse through ``configparser``. Rainmeter writes its own settings
    as UTF-16 while skin authors mostly ship UTF-8, so the file is parsed as
    UTF-8 first and re-parsed as UTF-16 if that fails.

read_variables(path)
    Literal read of the ``[Variables]`` section, laid out the way the Windows
    profile API returns a section (``key=value\\0key=value\\0\\0``) and split on
    ``=`` and NUL only. Variable values may contain ``;``, quotes and other
    characters that a grammar-based parser would treat specially, so they are
    never tokenized.

write_variables(path, pairs) is the write-back counterpart used to carry user
values over into a freshly extracted skin.
"""

from __future__ import annotations

import codecs
import configparser
import logging
import re
from pathlib import Path
from typing import Iterable, Iterator

from install_errors import ConfigNotFound, ConfigParseError, IOFailure

_log = logging.getLogger(__name__)

VARIABLES_SECTION = "Variables"

# Same ceiling as the character buffer handed to GetPrivateProfileSectionW
# (SHRT_MAX). Longer sections are truncated; this is a known limitation.
SECTION_BUFFER_SIZE = 32767

PRIMARY_ENCODING = "utf-8-sig"
FALLBACK_ENCODING = "utf-16-le"
NEW_FILE_ENCODING = "utf-16"
# 8-bit text that is not UTF-8 is read with the Western Windows codepage
ANSI_ENCODING = "cp1252"

_SECTION_RE = re.compile(r"^\s*\[(?P<name>[^\]]*)\]")
_ESCAPED_BYTE_RE = re.compile("[\udc80-\udcff]")


# ── Encoding ──────────────────────────────────────────────────────────


def detect_encoding(data: bytes) -> str:
    """Return the codec name a file was written with.

    A BOM wins. Without one, NUL bytes over an even length mean UTF-16LE,
    valid UTF-8 means UTF-8 and anything else is ANSI (``ANSI_ENCODING``).
    """
    if data.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return "utf-16"
    if b"\x00" in data and len(data) % 2 == 0:
        return "utf-16-le"
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return ANSI_ENCODING
    return "utf-8"


def _is_unicode(encoding: str) -> bool:
    return encoding.startswith("utf")


def _error_handler(encoding: str) -> str:
    return "surrogatepass" if encoding.startswith("utf-16") else "surrogateescape"


def decode_text(data: bytes) -> tuple[str, str]:
    """Decode file bytes, returning ``(text, encoding)``.

    Bytes the ANSI codepage leaves undefined are kept as escaped surrogates
    so an ANSI file is written back byte for byte.
    """
    encoding = detect_encoding(data)
    return data.decode(encoding, errors=_error_handler(encoding)), encoding


def encode_text(text: str, encoding: str) -> bytes:
    if _is_unicode(encoding):
        # undefined ANSI bytes map to the code point of the same value
        text = _ESCAPED_BYTE_RE.sub(lambda m: chr(ord(m.group()) - 0xDC00), text)
    return text.encode(encoding, errors=_error_handler(encoding))


def _decode_primary(data: bytes) -> str:
    text = data.decode(PRIMARY_ENCODING)
    # UTF-16 text made of ASCII characters is valid UTF-8 full of NULs
    if "\x00" in text:
        raise UnicodeDecodeError(PRIMARY_ENCODING, data, 0, len(data), "embedded NUL")
    return text


def _decode_fallback(data: bytes) -> str:
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16")
    return data.decode(FALLBACK_ENCODING)


# ── Generic parse ─────────────────────────────────────────────────────


def _new_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(
        interpolation=None,
        strict=False,
        allow_no_value=True,
        delimiters=("=",),
        comment_prefixes=(";",),
        inline_comment_prefixes=None,
    )
    parser.optionxform = str  # keep key case
    return parser


def _parse(text: str) -> configparser.ConfigParser:
    parser = _new_parser()
    # Rainmeter has no continuation lines; indented keys are ordinary keys.
    parser.read_string("\n".join(line.lstrip() for line in text.splitlines()))
    return parser


def read_config(path: str | Path) -> configparser.ConfigParser:
    """Parse an INI file whose encoding is either UTF-8 or UTF-16.

    Raises ``ConfigNotFound`` if the path is not a file and
    ``ConfigParseError`` if neither encoding yields a valid parse.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigNotFound(f"{path} is not a file")
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ConfigNotFound(f"Could not open {path}: {e}") from e

    try:
        return _parse(_decode_primary(data))
    except (UnicodeDecodeError, configparser.Error) as e:
        _log.debug("%s did not parse as UTF-8 (%s), retrying as UTF-16", path.name, e)

    try:
        return _parse(_decode_fallback(data))
    except (UnicodeDecodeError, configparser.Error) as e:
        raise ConfigParseError(f"Could not parse {path}: {e}") from e


def find_section(config: configparser.ConfigParser, name: str) -> str | None:
    """Return the actual name of ``name`` in ``config``, ignoring case."""
    wanted = name.lower()
    for section in config.sections():
        if section.lower() == wanted:
            return section
    return None


# ── Raw section access ────────────────────────────────────────────────


def _section_lines(text: str, section: str) -> list[str]:
    """Lines of the first ``[section]`` block, header excluded."""
    wanted = section.lower()
    lines: list[str] = []
    found = False
    for line in text.splitlines():
        match = _SECTION_RE.match(line)
        if match:
            if found:
                break
            found = match.group("name").strip().lower() == wanted
            continue
        if found:
            lines.append(line)
    return lines


def read_section_buffer(path: str | Path, section: str = VARIABLES_SECTION) -> str:
    """Return ``section`` as a NUL-delimited, double-NUL-terminated buffer.

    Comment and blank lines are dropped, whitespace around key and value is
    trimmed, and the result is capped at ``SECTION_BUFFER_SIZE`` characters.
    A missing file or section gives an empty section (``"\\0\\0"``).
    """
    path = Path(path)
    if not path.is_file():
        return "\0\0"
    try:
        text, _ = decode_text(path.read_bytes())
    except OSError as e:
        raise IOFailure(f"Could not read {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigParseError(f"Could not decode {path}: {e}") from e

    entries = []
    for line in _section_lines(text, section):
        entry = line.strip()
        if not entry or entry.startswith(";") or "=" not in entry:
            continue
        key, _, value = entry.partition("=")
        if key.strip():
            entries.append(f"{key.strip()}={value.strip()}")

    buffer = "".join(entry + "\0" for entry in entries) + "\0"
    if len(buffer) < 2:
        buffer += "\0"
    if len(buffer) > SECTION_BUFFER_SIZE:
        buffer = buffer[: SECTION_BUFFER_SIZE - 2] + "\0\0"
    return buffer


def iter_section_pairs(buffer: str) -> Iterator[tuple[str, str]]:
    """Yield ``(key, value)`` pairs from a section buffer.

    The first ``=`` of an entry ends its key, a NUL ends its value, and a
    second consecutive NUL (or the end of the buffer) ends the section.
    Entries without ``=`` are skipped.
    """
    start = 0
    key = None
    previous_null = True
    for cursor, char in enumerate(buffer):
        if char == "=" and key is None:
            key = buffer[start:cursor]
            start = cursor + 1
            previous_null = False
        elif char == "\0":
            if previous_null:
                return
            if key is not None:
                yield key, buffer[start:cursor]
            key = None
            start = cursor + 1
            previous_null = True
        else:
            previous_null = False


def read_variables(path: str | Path) -> tuple[list[str], list[str]]:
    """Return the keys and values of the ``[Variables]`` section, in order.

    Both lists have the same length. A missing file or section yields two
    empty lists.
    """
    keys: list[str] = []
    values: list[str] = []
    for key, value in iter_section_pairs(read_section_buffer(path)):
        keys.append(key)
        values.append(value)
    return keys, values


def _set_value(lines: list[str], section: str, key: str, value: str):
    wanted = section.lower()
    start = end = None
    for index, line in enumerate(lines):
        match = _SECTION_RE.match(line)
        if not match:
            continue
        if start is not None:
            end = index
            break
        if match.group("name").strip().lower() == wanted:
            start = index + 1

    if start is None:
        lines.append(f"[{section}]")
        lines.append(f"{key}={value}")
        return
    if end is None:
        end = len(lines)

    for index in range(start, end):
        entry = lines[index].strip()
        if entry.startswith(";") or "=" not in entry:
            continue
        if entry.partition("=")[0].strip().lower() == key.lower():
            lines[index] = f"{key}={value}"
            return

    insert_at = end
    while insert_at > start and not lines[insert_at - 1].strip():
        insert_at -= 1
    lines.insert(insert_at, f"{key}={value}")


def write_variables(
    path: str | Path,
    pairs: Iterable[tuple[str, str]],
    section: str = VARIABLES_SECTION,
):
    """Write ``pairs`` into ``section`` of ``path``.

    Existing keys are replaced in place (case-insensitive match), new keys
    go to the end of the section, and the section is appended if missing.
    The file keeps its encoding and line endings; a new file is UTF-16, and
    so is an ANSI file that cannot hold one of the values.
    """
    path = Path(path)
    try:
        if path.exists():
            text, encoding = decode_text(path.read_bytes())
        else:
            text, encoding = "", NEW_FILE_ENCODING
        newline = "\n" if text and "\r\n" not in text else "\r\n"

        lines = text.splitlines()
        for key, value in pairs:
            _set_value(lines, section, key, value)

        text = newline.join(lines) + newline
        try:
            data = encode_text(text, encoding)
        except UnicodeEncodeError:
            _log.info("%s cannot hold the new values as %s, writing UTF-16", path.name, encoding)
            data = encode_text(text, NEW_FILE_ENCODING)
        path.write_bytes(data)
    except OSError as e:
        raise IOFailure(f"Could not write variables to {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigParseError(f"Could not decode {path}: {e}") from e
