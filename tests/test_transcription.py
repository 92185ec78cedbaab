"""
TranscriptionAggregator and the routing-intent rule.
"""
import pytest

from live_session.models import Side
from live_session.transcription import RouteIntentRule, TranscriptionAggregator


class TestTurnAggregation:
    def test_fragments_join_into_one_entry(self):
        agg = TranscriptionAggregator()
        for fragment in ["Go to ", "the ", "market"]:
            agg.append_fragment(Side.CALLER, fragment)

        entries = agg.complete_turn()

        assert len(entries) == 1
        assert entries[0].side is Side.CALLER
        assert entries[0].text == "Go to the market"

    def test_whitespace_only_yields_nothing(self):
        agg = TranscriptionAggregator()
        agg.append_fragment(Side.CALLER, "  ")
        agg.append_fragment(Side.ASSISTANT, "\n")

        assert agg.complete_turn() == []

    def test_both_sides_caller_first(self):
        agg = TranscriptionAggregator()
        agg.append_fragment(Side.ASSISTANT, "Sure, ")
        agg.append_fragment(Side.CALLER, "Check traffic")
        agg.append_fragment(Side.ASSISTANT, "checking.")

        entries = agg.complete_turn()

        assert [(e.side, e.text) for e in entries] == [
            (Side.CALLER, "Check traffic"),
            (Side.ASSISTANT, "Sure, checking."),
        ]

    def test_buffers_reset_after_turn(self):
        agg = TranscriptionAggregator()
        agg.append_fragment(Side.CALLER, "first")
        agg.complete_turn()
        agg.append_fragment(Side.CALLER, "second")

        assert [e.text for e in agg.complete_turn()] == ["second"]

    def test_current_text_is_live(self):
        agg = TranscriptionAggregator()
        agg.append_fragment(Side.CALLER, "Go ")
        agg.append_fragment(Side.CALLER, "home")
        assert agg.current_text(Side.CALLER) == "Go home"

    def test_system_side_rejected(self):
        with pytest.raises(ValueError):
            TranscriptionAggregator().append_fragment(Side.SYSTEM, "x")


class TestRouteIntentRule:
    def test_extracts_destination(self):
        assert RouteIntentRule().match("Take me to El-Moheb street") == "el-moheb street"

    def test_directions_to(self):
        assert RouteIntentRule().match("Directions to the airport please") == "the airport please"

    def test_no_keyword(self):
        assert RouteIntentRule().match("What is the weather") is None

    def test_short_destination_ignored(self):
        assert RouteIntentRule().match("go to it") is None

    def test_keyword_without_pattern_match_keeps_text(self):
        # "navigate" triggers but nothing matches the strip pattern.
        assert RouteIntentRule().match("navigate") == "navigate"

    def test_empty(self):
        assert RouteIntentRule().match("") is None

    def test_configurable(self):
        rule = RouteIntentRule(keywords=("drive",), destination_pattern=r".*drive\s+", min_destination_length=0)
        assert rule.match("Please drive home") == "home"
        assert rule.match("Go to the market") is None


class TestRouteSideEffect:
    def test_route_request_triggered(self):
        requested = []
        agg = TranscriptionAggregator(route_rule=RouteIntentRule(), on_route_request=requested.append)
        agg.append_fragment(Side.CALLER, "Navigate to Tahrir Square")
        agg.complete_turn()

        assert requested == ["tahrir square"]

    def test_assistant_text_not_scanned(self):
        requested = []
        agg = TranscriptionAggregator(route_rule=RouteIntentRule(), on_route_request=requested.append)
        agg.append_fragment(Side.ASSISTANT, "Heading to the market now")
        agg.complete_turn()

        assert requested == []

    def test_no_rule_no_side_effect(self):
        requested = []
        agg = TranscriptionAggregator(on_route_request=requested.append)
        agg.append_fragment(Side.CALLER, "Go to the market")
        agg.complete_turn()

        assert requested == []
