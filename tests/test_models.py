"""Tests for analysis models."""

import pytest
from pydantic import ValidationError

from src.ai.models import AnalysisOutput

VALID = {
    "ripeness": "unripe",
    "confidence": 64.5,
    "sweetness": 3,
    "variety": "mini",
    "skinQuality": "fair",
    "reasoning": "White field spot, green stem.",
}


class TestAnalysisOutput:
    def test_accepts_camel_case_alias(self):
        output = AnalysisOutput.model_validate(VALID)

        assert output.skin_quality == "fair"
        assert output.to_dict()["skin_quality"] == "fair"

    def test_accepts_field_name(self):
        data = dict(VALID)
        data["skin_quality"] = data.pop("skinQuality")

        assert AnalysisOutput.model_validate(data).skin_quality == "fair"

    def test_reasoning_optional(self):
        data = dict(VALID)
        del data["reasoning"]

        assert AnalysisOutput.model_validate(data).reasoning == ""

    @pytest.mark.parametrize(
        "field,value",
        [
            ("ripeness", "overripe"),
            ("confidence", 101),
            ("confidence", -1),
            ("sweetness", 0),
            ("sweetness", 11),
            ("variety", "seedless"),
            ("skinQuality", "excellent"),
        ],
    )
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            AnalysisOutput.model_validate(dict(VALID, **{field: value}))

    def test_is_frozen(self):
        output = AnalysisOutput.model_validate(VALID)

        with pytest.raises(ValidationError):
            output.ripeness = "ripe"
