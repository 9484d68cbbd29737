"""Query output parser for the window-manager bridge.

Turns the JSON printed by ``yabai -m query --displays|--spaces|--windows``
into a candidate Snapshot. Either the whole Snapshot parses or a ParseError
is raised; nothing is applied partially.
"""

import json
import logging
import re
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import ParseError
from .models.snapshot import Display, Snapshot, Space, Window

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# String literals are matched whole so padding is only stripped outside them
_STRING_OR_PADDED_NUMBER = re.compile(r'"(?:\\.|[^"\\])*"|(?<=:)(\s*)0+(?=\d)')


def _strip_padding(match: "re.Match") -> str:
    spacing = match.group(1)
    return match.group(0) if spacing is None else spacing


def clean_output(output: str) -> str:
    """Normalize known yabai output quirks before decoding.

    yabai can emit backslash-escaped line continuations inside window titles
    and zero-padded integers, neither of which is valid JSON.
    """
    text = output.replace("\\\n", "")
    return _STRING_OR_PADDED_NUMBER.sub(_strip_padding, text).strip()


def _decode(output: str, source: str) -> List[Any]:
    text = clean_output(output)
    if not text:
        raise ParseError(source, "empty output")

    try:
        # strict=False accepts raw control characters inside titles
        data = json.loads(text, strict=False)
    except json.JSONDecodeError as e:
        raise ParseError(source, f"invalid JSON: {e}", excerpt=text) from e

    if not isinstance(data, list):
        raise ParseError(source, f"expected a JSON array, got {type(data).__name__}", excerpt=text)
    return data


def parse_records(output: str, model: Type[ModelT], source: str) -> List[ModelT]:
    """Decode a JSON array of records into models.

    Args:
        output: Raw tool output
        model: Pydantic model for each record
        source: Name used in error messages (e.g. "spaces")

    Returns:
        List of validated models, in tool order

    Raises:
        ParseError: Output is not a JSON array of valid records
    """
    records = _decode(output, source)
    parsed: List[ModelT] = []

    for position, record in enumerate(records):
        if not isinstance(record, dict):
            raise ParseError(source, f"record {position} is {type(record).__name__}, expected object")
        try:
            parsed.append(model.model_validate(record))
        except ValidationError as e:
            raise ParseError(source, f"record {position} failed validation: {e}") from e

    logger.debug(f"Parsed {len(parsed)} {source} records")
    return parsed


def parse_displays(output: str) -> List[Display]:
    return parse_records(output, Display, "displays")


def parse_spaces(output: str) -> List[Space]:
    return parse_records(output, Space, "spaces")


def parse_windows(output: str) -> List[Window]:
    return parse_records(output, Window, "windows")


def parse_snapshot(
    spaces_output: str,
    windows_output: str,
    displays_output: Optional[str] = None,
) -> Snapshot:
    """Build a candidate Snapshot from one query cycle.

    Args:
        spaces_output: Output of ``query --spaces``
        windows_output: Output of ``query --windows``
        displays_output: Output of ``query --displays`` (optional)

    Returns:
        Snapshot with generation 0; the StateStore stamps the real generation

    Raises:
        ParseError: Any part of the output is malformed or inconsistent
    """
    spaces = parse_spaces(spaces_output)
    windows = parse_windows(windows_output)
    displays = parse_displays(displays_output) if displays_output is not None else []

    try:
        return Snapshot(
            displays=tuple(sorted(displays, key=lambda d: d.index)),
            spaces=tuple(sorted(spaces, key=lambda s: s.index)),
            windows=tuple(windows),
        )
    except ValidationError as e:
        raise ParseError("snapshot", f"inconsistent query results: {e}") from e
