"""Tests for the granular intensity mapper.

Validates:
- Band selection and within-band modifier accumulation
- Monotonicity across every dimension
- Intensity block rendering and omission when all levels are zero
"""

import pytest

from storyteller.prompts.intensity import (
    COMPLIANCE_PREAMBLE,
    DIMENSIONS,
    INTENSITY_TABLES,
    build_intensity_block,
    get_instruction,
    get_tier,
)


class TestTierTables:
    """Every table is well formed."""

    def test_max_values_strictly_increase_and_end_at_100(self):
        for dimension, tiers in INTENSITY_TABLES.items():
            maxes = [t.max for t in tiers]
            assert maxes == sorted(set(maxes)), dimension
            assert maxes[-1] == 100, dimension

    def test_covers_the_documented_dimensions(self):
        for dim in ("violence", "gore", "romance", "adult_content", "language", "scariness"):
            assert dim in DIMENSIONS


class TestGetTier:
    def test_first_band_whose_max_covers_level(self):
        assert get_tier("violence", 80).band_index == 7
        assert get_tier("violence", 81).band_index == 8

    def test_top_of_band_earns_every_modifier(self):
        selection = get_tier("violence", 80)
        assert selection.modifiers == INTENSITY_TABLES["violence"][7].modifiers

    def test_bottom_of_band_earns_one_modifier(self):
        selection = get_tier("violence", 81)
        assert selection.modifier_count == 1

    def test_out_of_range_levels_are_clamped(self):
        assert get_tier("violence", 250).band_index == len(INTENSITY_TABLES["violence"]) - 1
        assert get_tier("violence", -5).modifier_count == 0

    def test_unknown_dimension_raises(self):
        with pytest.raises(KeyError):
            get_tier("spiciness", 50)


class TestMonotonicity:
    """Raising a slider never produces a milder instruction."""

    @pytest.mark.parametrize("dimension", DIMENSIONS)
    def test_band_and_modifiers_never_decrease(self, dimension):
        previous = get_tier(dimension, 0)
        for step in range(1, 201):
            current = get_tier(dimension, step / 2)
            assert current.band_index >= previous.band_index
            if current.band_index == previous.band_index:
                assert current.modifier_count >= previous.modifier_count
            previous = current


class TestGetInstruction:
    def test_81_differs_from_80(self):
        at_80 = get_instruction("violence", 80)
        at_81 = get_instruction("violence", 81)
        assert at_80 != at_81
        assert "extreme violence approaching torture" in at_81
        assert any(mod in at_81 for mod in INTENSITY_TABLES["violence"][8].modifiers)

    def test_zero_means_none(self):
        assert "none" in get_instruction("gore", 0).lower()


class TestBuildIntensityBlock:
    def test_all_zero_omits_block(self):
        assert build_intensity_block({"violence": 0, "gore": 0}) == ""
        assert build_intensity_block(None) == ""

    def test_renders_only_active_dimensions(self):
        block = build_intensity_block({"violence": 81, "gore": 0, "romance": 40})
        assert COMPLIANCE_PREAMBLE in block
        assert "(81%)" in block
        assert "(40%)" in block
        assert "(0%)" not in block
