"""Tests for the closed analysis type table."""

import pytest

from gitanalyzer.domain.analysis_types import (
    ANALYSIS_TYPE_SPECS,
    SELECTABLE_ANALYSIS_TYPES,
    AnalysisType,
    get_spec,
    type_label,
)

pytestmark = pytest.mark.unit


def test_every_type_has_a_spec():
    assert set(ANALYSIS_TYPE_SPECS) == set(AnalysisType)


def test_status_key_for_ui_theme_uses_short_suffix():
    assert get_spec("ui_theme").status_key == "generating_ui"
    assert get_spec(AnalysisType.PRD).status_key == "generating_prd"


def test_legacy_type_is_not_selectable():
    assert get_spec(AnalysisType.FERRAMENTAS).legacy is True
    assert AnalysisType.FERRAMENTAS not in SELECTABLE_ANALYSIS_TYPES
    assert AnalysisType.PERFORMANCE in SELECTABLE_ANALYSIS_TYPES


def test_get_spec_rejects_unknown_tag():
    with pytest.raises(ValueError):
        get_spec("horoscope")


def test_type_label_falls_back_to_tag():
    assert type_label("seguranca") == "Security"
    assert type_label("horoscope") == "horoscope"
