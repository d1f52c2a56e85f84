"""Tests for LLM response parsing."""

import json

import pytest
from helpers import fenced, judgment_response, prediction_response, summary_response

from abilitymap.core.errors import ParseError
from abilitymap.evaluation.parsing import (
    extract_json,
    parse_judgments,
    parse_predictions,
    parse_summary,
)


class TestExtractJson:
    def test_json_fence(self) -> None:
        result = extract_json(fenced({"a": 1}))
        assert result.ok
        assert result.data == {"a": 1}
        assert result.strategy == "json_fence"

    def test_untagged_fence(self) -> None:
        text = 'Result:\n```\n{"a": 2}\n```'
        result = extract_json(text)
        assert result.data == {"a": 2}
        assert result.strategy == "any_fence"

    def test_bare_braces(self) -> None:
        result = extract_json('The answer is {"a": 3} as requested.')
        assert result.data == {"a": 3}
        assert result.strategy == "braces"

    def test_json_fence_preferred_over_other_fences(self) -> None:
        text = '```\n{"from": "plain"}\n```\n\n```json\n{"from": "json"}\n```'
        assert extract_json(text).data == {"from": "json"}

    def test_invalid_fence_falls_through(self) -> None:
        """A fence with broken JSON does not stop later strategies."""
        text = '```\n{"a": 4}\n```\n\n```json\n{not json}\n```'
        result = extract_json(text)
        assert result.data == {"a": 4}
        assert result.strategy == "any_fence"

    def test_array_is_not_an_object(self) -> None:
        result = extract_json("```json\n[1, 2]\n```")
        assert not result.ok
        with pytest.raises(ParseError, match="expected an object"):
            result.unwrap()

    def test_no_json(self) -> None:
        result = extract_json("I cannot evaluate this item.")
        assert not result.ok
        with pytest.raises(ParseError, match="no JSON found"):
            result.unwrap()


class TestParseJudgments:
    def test_parses_entries(self) -> None:
        judgments = parse_judgments(judgment_response({"Teamwork": 3, "Leadership": -1}))
        assert [(j.criterion, j.level) for j in judgments] == [
            ("Teamwork", 3),
            ("Leadership", -1),
        ]
        assert judgments[0].evidence == ("evidence for Teamwork",)
        assert judgments[0].reasoning == "Teamwork reasoning"
        assert judgments[0].evaluable

    def test_level_name_defaults(self) -> None:
        judgments = parse_judgments(judgment_response({"Teamwork": 4}))
        assert judgments[0].level_name == "Mentor"

    def test_accepts_criterion_key_and_string_level(self) -> None:
        text = fenced({"evaluations": [{"criterion": "Teamwork", "level": "2"}]})
        [judgment] = parse_judgments(text)
        assert judgment.criterion == "Teamwork"
        assert judgment.level == 2

    @pytest.mark.parametrize("empty", [None, ""])
    def test_empty_criteria_key_falls_back_to_criterion(self, empty: str | None) -> None:
        text = fenced(
            {"evaluations": [{"criteria": empty, "criterion": "Leadership", "level": 1}]}
        )
        [judgment] = parse_judgments(text)
        assert judgment.criterion == "Leadership"

    def test_evaluable_false(self) -> None:
        text = judgment_response({"Leadership": 0}, evaluable={"Leadership": False})
        assert not parse_judgments(text)[0].evaluable

    def test_string_evidence_becomes_list(self) -> None:
        text = fenced(
            {"evaluations": [{"criteria": "Teamwork", "level": 1, "evidence": "paired"}]}
        )
        assert parse_judgments(text)[0].evidence == ("paired",)

    def test_invalid_entries_skipped(self) -> None:
        text = fenced(
            {
                "evaluations": [
                    {"criteria": "Teamwork", "level": "high"},
                    {"level": 2},
                    "not an entry",
                    {"criteria": "Communication", "level": 2.0},
                ]
            }
        )
        judgments = parse_judgments(text)
        assert [(j.criterion, j.level) for j in judgments] == [("Communication", 2)]

    def test_missing_array(self) -> None:
        with pytest.raises(ParseError, match="evaluations"):
            parse_judgments(fenced({"predictions": []}))

    def test_unparseable(self) -> None:
        with pytest.raises(ParseError):
            parse_judgments("no json here")

    def test_raw_object_without_fence(self) -> None:
        text = json.dumps({"evaluations": [{"criteria": "Adaptability", "level": 1}]})
        assert parse_judgments(text)[0].criterion == "Adaptability"


class TestParsePredictions:
    def test_parses_entries(self) -> None:
        predictions = parse_predictions(prediction_response({"Teamwork": 3, "Leadership": 1}))
        assert {p.criterion: p.predicted_max_score for p in predictions} == {
            "Teamwork": 3,
            "Leadership": 1,
        }

    def test_snake_case_key(self) -> None:
        text = fenced({"predictions": [{"criterion": "Teamwork", "predicted_max_score": 2}]})
        assert parse_predictions(text)[0].predicted_max_score == 2

    @pytest.mark.parametrize("raw,clamped", [(0, 1), (-2, 1), (7, 4)])
    def test_out_of_range_clamped(self, raw: int, clamped: int) -> None:
        predictions = parse_predictions(prediction_response({"Teamwork": raw}))
        assert predictions[0].predicted_max_score == clamped

    def test_entry_without_score_skipped(self) -> None:
        text = fenced({"predictions": [{"criteria": "Teamwork"}]})
        assert parse_predictions(text) == []

    def test_missing_array(self) -> None:
        with pytest.raises(ParseError, match="predictions"):
            parse_predictions(fenced({"evaluations": []}))


class TestParseSummary:
    def test_parses_summary(self) -> None:
        text = summary_response("Teamwork", "  Reviews often and pairs on fixes.  ")
        assert parse_summary(text) == "Reviews often and pairs on fixes."

    def test_summary_text_key(self) -> None:
        assert parse_summary(fenced({"summary_text": "Helpful."})) == "Helpful."

    @pytest.mark.parametrize("payload", [{"summary": ""}, {"summary": "   "}, {"summary": 3}, {}])
    def test_empty_summary(self, payload: dict[str, object]) -> None:
        with pytest.raises(ParseError, match="no summary"):
            parse_summary(fenced(payload))

    def test_no_json(self) -> None:
        with pytest.raises(ParseError):
            parse_summary("The contributor is a strong reviewer.")
