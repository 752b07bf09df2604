from __future__ import annotations

from datetime import date

from eventscout.data.templates import get_template
from eventscout.models.schemas import SearchRequest
from eventscout.services import query_builder
from eventscout.services.query_builder import build_query


def test_unified_builder_adds_event_keywords_and_year():
    request = SearchRequest(user_text="legal tech", country="DE")
    built = build_query(request, today=date(2025, 6, 1))
    assert built.query == "legal tech conference summit 2025"
    assert built.narrative_query == built.query
    assert built.template_id is None


def test_unified_builder_uses_window_year_and_keeps_existing_keywords():
    request = SearchRequest(
        user_text="Compliance Summit conference",
        country="DE",
        date_from=date(2026, 3, 1),
        date_to=date(2026, 3, 31),
    )
    built = build_query(request, today=date(2025, 1, 1))
    assert built.query == "Compliance Summit conference 2026"


def test_unified_builder_truncates_on_word_boundary(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "query_max_length", 30)
    request = SearchRequest(user_text="international anti money laundering compliance forum")
    built = build_query(request, today=date(2025, 1, 1))
    assert len(built.query) <= 30
    assert not built.query.endswith(" ")
    assert built.query.startswith("international anti money")


def test_weighted_builder_groups_terms_and_adds_negatives():
    template = get_template("legal-compliance")
    request = SearchRequest(user_text="whistleblowing", country="DE", industry="legal-compliance")
    built = build_query(request, today=date(2025, 1, 1))

    assert built.template_id == "legal-compliance"
    assert built.query.startswith("(compliance OR legal OR regulatory")
    assert "(whistleblowing)" in built.query
    assert '"Germany"' in built.query or "Germany" in built.query
    # Prevention weight 7 keeps only the strongest negative filters.
    assert "-food" in built.query
    assert "-retail" not in built.query
    assert built.narrative_query.endswith("2025")
    assert "Germany" in built.narrative_query
    assert template.event_types[0] in built.narrative_query


def test_weighted_builder_appends_profile_terms_and_competitors(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "query_max_length", 1000)
    request = SearchRequest(user_text="compliance", country="ALL", industry="legal-compliance")
    profile = {"industry_terms": ["sanctions screening"], "competitors": ["Acme Corp"]}
    built = build_query(request, user_profile=profile, today=date(2025, 1, 1))
    assert '"sanctions screening"' in built.query
    assert '-"Acme Corp"' in built.query


def test_default_industry_setting_selects_template(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "default_industry", "fintech")
    built = build_query(SearchRequest(user_text="payments"), today=date(2025, 1, 1))
    assert built.template_id == "fintech"


def test_build_query_falls_back_to_raw_text_on_error(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("template exploded")

    monkeypatch.setattr(query_builder, "_build_unified", boom)
    built = build_query(SearchRequest(user_text="raw text"))
    assert built.query == "raw text"
    assert built.narrative_query == "raw text"


def test_build_query_honours_given_settings(isolated_settings):
    config = isolated_settings.model_copy(update={"query_max_length": 25, "default_industry": "fintech"})
    request = SearchRequest(user_text="payments and open banking meetups across europe")

    built = build_query(request, today=date(2025, 1, 1), config=config)

    assert built.template_id == "fintech"
    assert len(built.query) <= 25
    assert len(built.narrative_query) <= 25
