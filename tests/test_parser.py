"""
Query parser tests.

Covers decoding of yabai JSON, known output quirks, and the all-or-nothing
rule for building a Snapshot.
"""

import json

import pytest

from conftest import make_display, make_space, make_window
from wm_bridge.errors import ErrorCode, ParseError
from wm_bridge.models import SpaceType
from wm_bridge.parser import (
    clean_output,
    parse_displays,
    parse_snapshot,
    parse_spaces,
    parse_windows,
)


class TestCleanOutput:

    def test_escaped_newline_removed(self):
        assert clean_output('[{"title": "a\\\nb"}]') == '[{"title": "ab"}]'

    def test_zero_padded_number_normalized(self):
        assert clean_output('[{"opacity": 00000, "id": 007}]') == '[{"opacity": 0, "id": 7}]'

    def test_decimals_and_strings_untouched(self):
        text = '[{"opacity": 0.5, "title": "build 00042"}]'
        assert clean_output(text) == text

    def test_padding_inside_title_untouched(self):
        text = '[{"title": "say\\": 007", "id": 007}]'

        assert clean_output(text) == '[{"title": "say\\": 007", "id": 7}]'

    def test_title_with_escaped_quote_and_colon_round_trips(self):
        output = json.dumps([make_window(1, "Term", 1, title='say": 007 "x":00')])

        windows = parse_windows(output)

        assert windows[0].title == 'say": 007 "x":00'


class TestRecordParsing:

    def test_spaces_parsed_with_aliases(self, spaces_json):
        spaces = parse_spaces(spaces_json)

        assert [s.index for s in spaces] == [1, 2]
        assert spaces[0].label == "web"
        assert spaces[0].focused is True
        assert spaces[0].visible is True
        assert spaces[0].windows == (10, 11)
        assert spaces[0].type == SpaceType.BSP

    def test_windows_parsed_with_aliases(self, windows_json):
        windows = parse_windows(windows_json)

        assert [w.id for w in windows] == [10, 11, 12]
        assert windows[0].focused is True
        assert windows[0].frame.w == 1440.0
        assert windows[0].stack_index is None

    def test_stacked_window_keeps_stack_index(self):
        windows = parse_windows(json.dumps([make_window(5, "Mail", 1, stack_index=2)]))

        assert windows[0].stack_index == 2

    def test_unknown_layout_maps_to_unknown(self):
        spaces = parse_spaces(json.dumps([make_space(1, layout="grid")]))

        assert spaces[0].type == SpaceType.UNKNOWN

    def test_null_label_becomes_empty(self):
        record = make_space(3)
        record["label"] = None

        space = parse_spaces(json.dumps([record]))[0]

        assert space.label == ""
        assert space.display_label == "3"

    def test_control_characters_in_title_accepted(self):
        output = '[' + json.dumps(make_window(1, "Notes", 1))[:-1] + ', "title": "line\tbreak"}]'

        windows = parse_windows(output)

        assert windows[0].title == "line\tbreak"

    def test_empty_array_is_valid(self):
        assert parse_windows("[]") == []

    def test_displays_parsed(self, displays_json):
        displays = parse_displays(displays_json)

        assert displays[0].index == 1
        assert displays[0].spaces == (1, 2)


class TestParseErrors:
    """Malformed output raises ParseError, never a partial result."""

    def test_empty_output(self):
        with pytest.raises(ParseError) as exc_info:
            parse_spaces("")

        assert exc_info.value.code == ErrorCode.PARSE_ERROR

    def test_invalid_json(self):
        with pytest.raises(ParseError) as exc_info:
            parse_spaces("could not connect to yabai")

        assert exc_info.value.context["source"] == "spaces"

    def test_object_instead_of_array(self):
        with pytest.raises(ParseError):
            parse_spaces(json.dumps(make_space(1)))

    def test_record_missing_required_field(self):
        record = make_window(1, "Finder", 1)
        del record["space"]

        with pytest.raises(ParseError):
            parse_windows(json.dumps([record]))

    def test_window_referencing_unknown_space(self, spaces_json):
        windows = json.dumps([make_window(99, "Ghost", 7)])

        with pytest.raises(ParseError) as exc_info:
            parse_snapshot(spaces_json, windows)

        assert exc_info.value.context["source"] == "snapshot"

    def test_duplicate_space_indices(self):
        spaces = json.dumps([make_space(1), make_space(1)])

        with pytest.raises(ParseError):
            parse_snapshot(spaces, "[]")


class TestParseSnapshot:

    def test_counts_and_fields_match(self, spaces_json, windows_json, displays_json):
        snapshot = parse_snapshot(spaces_json, windows_json, displays_json)

        assert len(snapshot.displays) == 1
        assert len(snapshot.spaces) == 2
        assert len(snapshot.windows) == 3
        assert snapshot.generation == 0
        assert {w.app for w in snapshot.windows} == {"Safari", "Terminal", "Code"}

    def test_spaces_sorted_by_index(self):
        spaces = json.dumps([make_space(3), make_space(1), make_space(2)])

        snapshot = parse_snapshot(spaces, "[]")

        assert [s.index for s in snapshot.spaces] == [1, 2, 3]

    def test_displays_optional(self, spaces_json, windows_json):
        snapshot = parse_snapshot(spaces_json, windows_json)

        assert snapshot.displays == ()

    def test_multiple_displays(self):
        displays = json.dumps([make_display(2, (3,)), make_display(1, (1, 2))])
        spaces = json.dumps([make_space(1), make_space(2), make_space(3, display=2)])

        snapshot = parse_snapshot(spaces, "[]", displays)

        assert [d.index for d in snapshot.displays] == [1, 2]

    def test_additive_fields_ignored(self):
        record = make_space(1, windows=(10, 11, 12))
        record["scratchpad"] = ""
        record["future-field"] = {"nested": True}

        snapshot = parse_snapshot(json.dumps([record]), json.dumps([
            make_window(10, "A", 1), make_window(11, "B", 1), make_window(12, "C", 1),
        ]))

        assert snapshot.spaces[0].index == 1
