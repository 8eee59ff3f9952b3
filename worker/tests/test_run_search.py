import argparse
import json
from unittest.mock import Mock, patch

import pytest

from leadfinder.core.planner import SearchValidationError
from leadfinder.core.search import SearchResponse
from leadfinder.etl.transform import to_leads
from leadfinder.jobs import run_search
from leadfinder.models import RawResult


@pytest.fixture
def mock_response():
    places = [
        RawResult(name="With Phone", place_id="1", phone="020 1234"),
        RawResult(name="With Website", place_id="2", website="https://example.com"),
        RawResult(name="Bare", place_id="3", address="14 Baner Road, Pune"),
    ]
    return SearchResponse(results=to_leads(places), api_calls=2, cached=False, cost_usd=0.064, places=places)


@pytest.fixture
def orchestrator(monkeypatch, mock_response):
    fake = Mock()
    fake.search.return_value = mock_response
    monkeypatch.setattr(run_search, "get_orchestrator", lambda: fake)
    monkeypatch.setattr(run_search, "get_settings", lambda: None)
    return fake


def test_run_search_job_passes_request(orchestrator):
    payload = run_search.run_search_job(
        keyword="bakery",
        location="Pune",
        category="All",
        scope="neighbourhood",
        sub_area="Baner",
        force_refresh=True,
    )

    args, kwargs = orchestrator.search.call_args
    assert args[:5] == ("bakery", "All", "Pune", "neighbourhood", "Baner")
    assert kwargs["force_refresh"] is True
    assert payload["count"] == 3
    assert payload["apiCalls"] == 2
    assert payload["cached"] is False


def test_run_search_job_applies_filters(orchestrator):
    payload = run_search.run_search_job(keyword="bakery", location="Pune", with_phone=True)
    assert [lead["name"] for lead in payload["results"]] == ["With Phone"]

    payload = run_search.run_search_job(keyword="bakery", location="Pune", with_website=True)
    assert [lead["name"] for lead in payload["results"]] == ["With Website"]

    payload = run_search.run_search_job(keyword="bakery", location="Pune", area="baner")
    assert [lead["name"] for lead in payload["results"]] == ["Bare"]
    assert payload["count"] == 1


def test_build_parser_defaults():
    parser = run_search.build_parser()
    args = parser.parse_args(["--keyword", "bakery", "--location", "Pune"])
    assert isinstance(parser, argparse.ArgumentParser)
    assert args.category == "Custom"
    assert args.scope == "city"
    assert args.sub_area == ""
    assert args.force_refresh is False
    assert args.area == ""


def test_main_prints_json(orchestrator, capsys):
    exit_code = run_search.main(["--keyword", "bakery", "--location", "Pune"])

    assert exit_code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["count"] == 3


def test_main_returns_2_on_validation_error(orchestrator):
    orchestrator.search.side_effect = SearchValidationError("Both keyword and location are required")
    assert run_search.main(["--keyword", " ", "--location", "Pune"]) == 2


def test_main_returns_1_on_search_failure(orchestrator):
    orchestrator.search.side_effect = RuntimeError("provider down")
    assert run_search.main(["--keyword", "bakery", "--location", "Pune"]) == 1


def test_main_clear_cache(orchestrator, capsys):
    orchestrator.clear_cache.return_value = True

    with patch.object(run_search, "run_search_job") as job:
        exit_code = run_search.main(["--keyword", "bakery", "--location", "Pune", "--clear-cache"])

    assert exit_code == 0
    assert not job.called
    orchestrator.clear_cache.assert_called_once_with("bakery", "Pune")
    assert json.loads(capsys.readouterr().out) == {"cleared": True}
