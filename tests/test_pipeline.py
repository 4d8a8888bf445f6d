from datetime import date
from decimal import Decimal

import httpx

from deal_scraper.pipeline import dry_run, extract_candidates
from deal_scraper.source_config import parse_source_config

from conftest import SOURCE_URL, html_handler, make_fetcher


def test_extract_candidates_keeps_defective_candidates(offers_html, source_tree, today):
    config = parse_source_config(source_tree, name="Example", url=SOURCE_URL)
    report = extract_candidates(offers_html, config, today)

    assert report.containers == 2
    assert [candidate.name for candidate in report.usable] == ["Acme Bank"]
    acme = report.usable[0]
    assert acme.reward_amount == Decimal("150")
    assert acme.required_direct_debits == 2
    assert acme.min_pay_in == Decimal("1000")
    assert acme.debit_card_transactions == 5
    assert acme.expiry_date == date(2099, 12, 31)

    problems = report.problems(config.location.container)
    assert len(problems) == 1
    assert problems[0].startswith("Brook Building Society: MissingMandatoryField: rewardAmount")


def test_dry_run_reports_candidates(offers_html, source_tree, today):
    fetcher = make_fetcher(html_handler(offers_html))
    result = dry_run(SOURCE_URL, source_tree, fetcher, today)

    assert result.success
    payload = result.to_dict()
    assert payload["deals_found"] == 1
    assert payload["candidates"][0]["reward_amount"] == "150"
    assert payload["candidates"][1]["usable"] is False


def test_dry_run_returns_config_problems_without_fetching(today):
    calls = []
    fetcher = make_fetcher(html_handler("", calls))
    result = dry_run(SOURCE_URL, {"locationPatterns": {}}, fetcher, today)

    assert not result.success
    assert result.errors[0].startswith("ConfigError: ")
    assert calls == []


def test_dry_run_returns_fetch_errors(source_tree, today):
    fetcher = make_fetcher(lambda request: httpx.Response(404))
    result = dry_run(SOURCE_URL, source_tree, fetcher, today)

    assert not result.success
    assert result.errors == [f"FetchError.HTTPStatus: HTTP 404 from {SOURCE_URL}"]


def test_dry_run_with_no_containers(source_tree, today):
    fetcher = make_fetcher(html_handler("<html><body></body></html>"))
    result = dry_run(SOURCE_URL, source_tree, fetcher, today)

    assert not result.success
    assert result.errors == ["No containers matched selector '.deal-item'"]


def test_dry_run_reports_malformed_url(source_tree, today):
    calls = []
    fetcher = make_fetcher(html_handler("", calls))
    result = dry_run("http://[::1", source_tree, fetcher, today)

    assert not result.success
    assert result.errors[0].startswith("FetchError.NetworkError: invalid url: ")
    assert calls == []


def test_dry_run_keeps_deal_with_unparsable_expiry(source_tree, today):
    page = """
    <div class="deal-item">
      <h3 class="bank-name">Acme Bank</h3>
      <span class="reward">£150 cashback</span>
      <span class="expiry">Offer ends 31/02/2099</span>
    </div>
    """
    result = dry_run(SOURCE_URL, source_tree, make_fetcher(html_handler(page)), today)

    assert result.success
    candidate = result.to_dict()["candidates"][0]
    assert candidate["usable"] is True
    assert candidate["expiry_date"] is None
    assert candidate["fields"]["expiry"].startswith("expiry: InvalidDate")
