"""Tests for the dataset adapters and snapshot-replace writes."""

import asyncio
import json
from datetime import date
from unittest.mock import AsyncMock

import feedparser
import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from healthdash.config import get_settings
from healthdash.models import DiseaseStat, NewsAlert, VaccinationRecord, WastewaterSample
from healthdash.services.csv_cache import CSVCacheResult
from healthdash.services.dataset_store import replace_snapshot
from healthdash.services.disease import (
    DiseaseService,
    build_disease_stats,
    epiweek,
    match_tracked_disease,
    parse_count,
)
from healthdash.services.news import (
    NewsService,
    dedupe_alerts,
    make_alert_id,
    parse_cdc_feed,
    parse_nyc_press_releases,
    parse_nys_news,
)
from healthdash.services.open_data_client import UpstreamClientError
from healthdash.services.vaccination import (
    VaccinationService,
    VaccinationSyncError,
    build_childhood_records,
    build_nys_records,
    parse_csv,
)
from healthdash.services.wastewater import (
    WastewaterService,
    alert_level_for,
    build_wastewater_rows,
    parse_concentration,
)

settings = get_settings()

NOW_ISO = "2026-03-02T10:05:00+00:00"

NYC_PRESS_HTML = """
<div class="span9">
  <p><strong>February 27, 2026</strong><br>
     <a href="/site/doh/about/press/pr2026/measles-update.page">Health Department Issues Measles Update</a></p>
  <p><strong>February 20, 2026</strong><br>
     <a href="https://www.nyc.gov/site/doh/about/press/pr2026/flu-season.page">Flu Season Peaks</a></p>
  <p>Paragraph without a date or link</p>
</div>
"""

NYS_NEWS_HTML = """
<article class="node node--type-news">
  <h2 class="node__title"><a href="/news/open-enrollment">Open Enrollment Extended</a></h2>
  <div class="field--name-field-publication-date"><time>March 1, 2026</time></div>
</article>
<article class="node node--type-news">
  <h2 class="node__title"><a href="/news/no-date">Undated Notice</a></h2>
</article>
"""

CDC_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>CDC HAN</title>
    <item>
      <title>Health Advisory: Measles Cases</title>
      <link>https://www.cdc.gov/han/2026/han00500.html</link>
      <description>Increase in measles cases.</description>
      <pubDate>Mon, 02 Mar 2026 12:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

CHILDHOOD_CSV = (
    "\ufeffYEAR_COVERAGE,QUARTER,VACCINE_GROUP,POP_DENOMINATOR,PERC_VAC,COUNT_PEOPLE_VAC\n"
    "2024,Q4,MMR,500,70,350\n"
    "2025,Q1,MMR,500,60,300\n"
    "2025,Q2,MMR,100,90,90\n"
    "2025,Q2,MMR,300,80,240\n"
    "2025,Q2,DTaP,200,75.5,151\n"
    "2025,Q2,DTaP,,,10\n"
    ",,,,,\n"
)


def url_router(routes: dict):
    """AsyncMock side effect dispatching on the request URL."""

    async def fetch(url, *args, **kwargs):
        response = routes[url]
        if isinstance(response, Exception):
            raise response
        return response

    return fetch


class TestReplaceSnapshot:
    """Tests for replace_snapshot."""

    @pytest.mark.asyncio
    async def test_replaces_matching_rows_only(self, db_session):
        await replace_snapshot(
            db_session,
            VaccinationRecord,
            [{"region": "nyc", "vaccine_name": "MMR"}, {"region": "nys", "vaccine_name": "Flu"}],
        )

        count = await replace_snapshot(
            db_session,
            VaccinationRecord,
            [{"region": "nyc", "vaccine_name": "DTaP"}],
            VaccinationRecord.region == "nyc",
        )

        assert count == 1
        rows = (await db_session.execute(select(VaccinationRecord))).scalars().all()
        assert sorted((r.region, r.vaccine_name) for r in rows) == [
            ("nyc", "DTaP"),
            ("nys", "Flu"),
        ]

    @pytest.mark.asyncio
    async def test_failed_insert_keeps_previous_snapshot(self, db_session):
        """Test delete and insert are one transaction."""
        await replace_snapshot(db_session, DiseaseStat, [{"name": "Measles", "current_count": 3}])

        with pytest.raises(IntegrityError):
            # name is NOT NULL
            await replace_snapshot(db_session, DiseaseStat, [{"name": None, "current_count": 1}])

        rows = (await db_session.execute(select(DiseaseStat))).scalars().all()
        assert [(r.name, r.current_count) for r in rows] == [("Measles", 3)]


class TestDisease:
    """Tests for the disease adapter."""

    def test_parse_count(self):
        assert parse_count("1,234") == 1234
        assert parse_count("-") == 0
        assert parse_count(None) == 0
        assert parse_count("n/a") == 0
        assert parse_count("7.0") == 7

    def test_parse_count_non_finite(self):
        assert parse_count("NaN") == 0
        assert parse_count("inf") == 0
        assert parse_count("1e999") == 0

    def test_non_finite_count_does_not_fail_stats(self):
        nndss = [
            {"label": "Measles", "location1": "NEW YORK", "year": "2026", "m1": "1e999"},
            {"label": "Measles", "location1": "NEW YORK CITY", "year": "2026", "m1": "3"},
        ]
        covid = [{"date_of_interest": "2026-03-01", "case_count": "inf", "probable_case_count": "2"}]

        rows = {r["name"]: r for r in build_disease_stats(nndss, covid, None, NOW_ISO)}

        assert rows["Measles"]["current_count"] == 3
        assert rows["COVID-19"]["current_count"] == 2

    def test_match_tracked_disease(self):
        assert match_tracked_disease("Measles, Indigenous") == "Measles"
        assert match_tracked_disease("Measles") == "Measles"
        assert match_tracked_disease("Pertussis") == "Pertussis"
        assert match_tracked_disease("Salmonellosis") is None
        assert match_tracked_disease(None) is None

    def test_epiweek(self):
        assert epiweek(date(2026, 3, 2)) == "202610"
        assert epiweek(date(2026, 1, 1)) == "202601"

    def test_build_disease_stats(self):
        nndss = [
            {"label": "Measles", "location1": "NEW YORK CITY", "year": "2026", "m1": "2"},
            {"label": "Measles", "location1": "NEW YORK", "year": "2026", "m1": "3"},
            {"label": "Measles", "location1": "NEW YORK", "year": "2025", "m1": "40"},
            {"label": "Measles", "location1": "NEW JERSEY", "year": "2026", "m1": "9"},
            {"label": "Pertussis", "location1": "NEW YORK", "year": "2026", "m1": "-"},
            {"label": "COVID-19", "location1": "NEW YORK", "year": "2026", "m1": "100"},
        ]
        covid = [{"date_of_interest": "2026-03-01T00:00:00.000", "case_count": "50", "probable_case_count": "5"}]
        fluview = {"epidata": [{"epiweek": 202608, "num_ili": 900}, {"epiweek": 202609, "num_ili": 1200}]}

        rows = {r["name"]: r for r in build_disease_stats(nndss, covid, fluview, NOW_ISO)}

        assert rows["Measles"]["current_count"] == 5
        assert rows["Measles"]["unit"] == "cases (YTD)"
        assert rows["Pertussis"]["current_count"] == 0
        assert rows["COVID-19"]["current_count"] == 55
        assert rows["COVID-19"]["unit"] == "cases (daily)"
        assert rows["COVID-19"]["data_source"] == "NYC Open Data"
        assert rows["Influenza (ILI)"]["current_count"] == 1200
        assert all(r["region"] == "nyc" for r in rows.values())
        assert all(r["week_ago_count"] == 0 for r in rows.values())

    def test_covid_falls_back_to_nndss(self):
        nndss = [{"label": "COVID-19", "location1": "NEW YORK", "year": "2026", "m1": "100"}]

        rows = {r["name"]: r for r in build_disease_stats(nndss, [], None, NOW_ISO)}

        assert rows["COVID-19"]["current_count"] == 100
        assert rows["COVID-19"]["data_source"] == "CDC NNDSS"
        assert "Influenza (ILI)" not in rows

    @pytest.mark.asyncio
    async def test_sync_with_optional_sources_down(self, db_session):
        """Test NYC COVID and ILINet outages do not fail the sync."""
        client = AsyncMock()
        client.fetch_records.side_effect = url_router(
            {
                settings.nndss_url: [
                    {"label": "Measles", "location1": "NEW YORK", "year": "2026", "m1": "4"}
                ],
                settings.nyc_covid_url: UpstreamClientError("HTTP 503"),
            }
        )
        client.fetch_json.side_effect = UpstreamClientError("timeout")

        service = DiseaseService(db_session, client=client)
        count = await service.sync_data()
        stats = await service.get_data("nyc")

        assert count == 11
        measles = next(s for s in stats if s.name == "Measles")
        assert measles.current_count == 4
        assert measles.week_ago.count == 0

    @pytest.mark.asyncio
    async def test_sync_fails_without_nndss(self, db_session):
        client = AsyncMock()
        client.fetch_records.side_effect = UpstreamClientError("HTTP 500")
        client.fetch_json.return_value = {"epidata": []}

        with pytest.raises(UpstreamClientError):
            await DiseaseService(db_session, client=client).sync_data()

    @pytest.mark.asyncio
    async def test_optional_fetches_cancelled_when_nndss_fails(self, db_session):
        """Test no optional fetch is left running after the sync has failed."""
        never = asyncio.Event()
        cancelled = []

        async def slow_fetch(url, *args, **kwargs):
            if url == settings.nndss_url:
                await asyncio.sleep(0)
                raise UpstreamClientError("HTTP 500")
            try:
                await never.wait()
            except asyncio.CancelledError:
                cancelled.append(url)
                raise

        client = AsyncMock()
        client.fetch_records.side_effect = slow_fetch
        client.fetch_json.side_effect = slow_fetch

        with pytest.raises(UpstreamClientError):
            await DiseaseService(db_session, client=client).sync_data()

        assert sorted(cancelled) == sorted([settings.nyc_covid_url, settings.delphi_fluview_url])


class TestWastewater:
    """Tests for the wastewater adapter."""

    def test_parse_concentration(self):
        assert parse_concentration("1234.5") == 1234.5
        assert parse_concentration(None) == 0.0
        assert parse_concentration("n/a") == 0.0

    def test_parse_concentration_non_finite(self):
        assert parse_concentration("NaN") == 0.0
        assert parse_concentration("inf") == 0.0
        assert parse_concentration("1e999") == 0.0

    def test_alert_level(self):
        assert alert_level_for(1000.0) == "low"
        assert alert_level_for(1000.1) == "high"

    def test_build_rows(self):
        records = [
            {"samplecollectdate": "2026-02-28T00:00:00.000", "wwtpname": "Newtown Creek", "pcrtargetavgconc": "1500", "pcrtarget": "SARS-CoV-2"},
            {"samplecollectdate": "2026-02-27T00:00:00.000", "wwtpname": "Wards Island", "pcrtargetavgconc": "900"},
            {"samplecollectdate": "2026-02-26T00:00:00.000", "wwtpname": "Hunts Point", "pcrtargetavgconc": "NaN"},
        ]

        rows = build_wastewater_rows(records, NOW_ISO)

        assert len(rows) == 3
        assert rows[0]["sample_date"] == "2026-02-28"
        assert rows[1]["pathogen"] == "SARS-CoV-2"
        assert rows[2]["concentration"] == 0.0
        assert all(r["average_concentration"] == 800.0 for r in rows)
        assert all(r["alert_level"] == "low" for r in rows)
        assert json.loads(rows[0]["pathogens"]) == ["SARS-CoV-2"]

    def test_infinite_reading_does_not_poison_average(self):
        records = [
            {"samplecollectdate": "2026-02-28", "wwtpname": "Newtown Creek", "pcrtargetavgconc": "1500"},
            {"samplecollectdate": "2026-02-27", "wwtpname": "Wards Island", "pcrtargetavgconc": "1e999"},
        ]

        rows = build_wastewater_rows(records, NOW_ISO)

        assert all(r["average_concentration"] == 750.0 for r in rows)
        assert all(r["alert_level"] == "low" for r in rows)

    @pytest.mark.asyncio
    async def test_empty_upstream_keeps_previous_data(self, db_session):
        client = AsyncMock()
        client.fetch_records.return_value = [
            {"samplecollectdate": "2026-02-28", "wwtpname": "Newtown Creek", "pcrtargetavgconc": "300"},
            {"samplecollectdate": "2026-02-27", "wwtpname": "Wards Island", "pcrtargetavgconc": "100"},
        ]
        service = WastewaterService(db_session, client=client)
        assert await service.sync_data() == 2

        client.fetch_records.return_value = []
        assert await service.sync_data() == 0

        data = await service.get_data()
        assert [s.date for s in data.samples] == ["2026-02-27", "2026-02-28"]
        assert data.average_concentration == 200.0
        assert data.alert_level == "low"
        rows = (await db_session.execute(select(WastewaterSample))).scalars().all()
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_get_data_empty(self, db_session):
        data = await WastewaterService(db_session, client=AsyncMock()).get_data()

        assert data.samples == []
        assert data.alert_level == "low"
        assert data.pathogens == []


class TestVaccination:
    """Tests for the vaccination adapter."""

    def test_parse_csv_strips_bom_and_blank_rows(self):
        rows = parse_csv(CHILDHOOD_CSV)

        assert len(rows) == 6
        assert "YEAR_COVERAGE" in rows[0]

    def test_build_childhood_records(self):
        """Test population-weighted rates over the latest year and quarter."""
        records = {
            r["vaccine_name"]: r
            for r in build_childhood_records(parse_csv(CHILDHOOD_CSV), "http://test/demo.csv")
        }

        mmr = records["MMR (Measles, Mumps, Rubella)"]
        assert mmr["current_year"] == 82.5
        assert mmr["last_available_date"] == "2025 Q2"
        assert mmr["region"] == "nyc"
        details = json.loads(mmr["calculation_details"])
        assert details["numerator"] == 330
        assert details["denominator"] == 400

        dtap = records["DTaP (Diphtheria, Tetanus, Pertussis)"]
        assert dtap["current_year"] == 75.5
        # Rows without a denominator still count as vaccinated
        assert json.loads(dtap["calculation_details"])["numerator"] == 161

    def test_build_childhood_records_empty(self):
        assert build_childhood_records([], "http://test/demo.csv") == []

    def test_build_nys_records(self):
        records = [
            {"week_ending": "2026-02-21T00:00:00.000", "respiratory_season": "2025-2026", "covid_19_dose_count": "1,000", "influenza_dose_count": "3000"},
            {"week_ending": "2026-02-28T00:00:00.000", "respiratory_season": "2025-2026", "covid_19_dose_count": "500", "influenza_dose_count": None},
        ]

        rows = {r["vaccine_name"]: r for r in build_nys_records(records, "http://test/nys.json")}

        covid = rows["COVID-19 (Seasonal Doses)"]
        assert covid["last_available_rate"] == 1500.0
        assert covid["last_available_date"] == "2025-2026 Season (as of 2026-02-28)"
        assert covid["region"] == "nys"
        assert rows["Influenza (Seasonal Doses)"]["last_available_rate"] == 3000.0

    def test_nys_non_finite_doses_count_as_zero(self):
        records = [
            {"week_ending": "2026-02-21", "respiratory_season": "2025-2026", "covid_19_dose_count": "NaN", "influenza_dose_count": "inf"},
            {"week_ending": "2026-02-28", "respiratory_season": "2025-2026", "covid_19_dose_count": "40", "influenza_dose_count": "1e999"},
        ]

        rows = {r["vaccine_name"]: r for r in build_nys_records(records, "http://test/nys.json")}

        assert rows["COVID-19 (Seasonal Doses)"]["last_available_rate"] == 40.0
        assert rows["Influenza (Seasonal Doses)"]["last_available_rate"] == 0.0

    def test_childhood_non_finite_rates_are_skipped(self):
        """Test NaN or infinite percentages do not reach the stored rate."""
        data = (
            "YEAR_COVERAGE,QUARTER,VACCINE_GROUP,POP_DENOMINATOR,PERC_VAC,COUNT_PEOPLE_VAC\n"
            "2025,Q2,MMR,100,NaN,90\n"
            "2025,Q2,MMR,300,80,240\n"
            "2025,Q2,DTaP,inf,75,151\n"
            "2025,Q2,DTaP,200,1e999,NaN\n"
        )

        records = {
            r["vaccine_name"]: r
            for r in build_childhood_records(parse_csv(data), "http://test/demo.csv")
        }

        mmr = records["MMR (Measles, Mumps, Rubella)"]
        assert mmr["current_year"] == 80.0
        assert json.loads(mmr["calculation_details"])["denominator"] == 300
        dtap = records["DTaP (Diphtheria, Tetanus, Pertussis)"]
        assert dtap["current_year"] == 0.0
        assert json.loads(dtap["calculation_details"])["numerator"] == 151

    @pytest.mark.asyncio
    async def test_partial_failure_persists_successful_region(self, db_session):
        client = AsyncMock()
        client.fetch_records.side_effect = UpstreamClientError("HTTP 503")
        csv_cache = AsyncMock()
        csv_cache.get_cached_csv.return_value = CSVCacheResult(
            data=CHILDHOOD_CSV, filename="demo.csv", from_cache=True
        )

        service = VaccinationService(db_session, client=client, csv_cache=csv_cache)
        with pytest.raises(VaccinationSyncError) as exc_info:
            await service.sync_data()

        assert "nys" in str(exc_info.value)
        data = await service.get_data()
        assert len(data.nyc) == 2
        assert data.nys == []

    @pytest.mark.asyncio
    async def test_get_data_lists_nys_seasonal_under_nyc(self, db_session):
        client = AsyncMock()
        client.fetch_records.return_value = [
            {"week_ending": "2026-02-28", "respiratory_season": "2025-2026", "covid_19_dose_count": "10", "influenza_dose_count": "20"}
        ]
        csv_cache = AsyncMock()
        csv_cache.get_cached_csv.return_value = CSVCacheResult(
            data=CHILDHOOD_CSV, filename="demo.csv", from_cache=False
        )

        service = VaccinationService(db_session, client=client, csv_cache=csv_cache)
        assert await service.sync_data() == 4

        data = await service.get_data()
        assert len(data.nys) == 2
        assert len(data.nyc) == 4
        assert data.nyc[0].calculation_details.denominator == 400


class TestNews:
    """Tests for the news adapter."""

    def test_parse_nyc_press_releases(self):
        alerts = parse_nyc_press_releases(NYC_PRESS_HTML, "https://www.nyc.gov/site/doh/about/press/recent-press-releases.page")

        assert [a["title"] for a in alerts] == [
            "Health Department Issues Measles Update",
            "Flu Season Peaks",
        ]
        assert alerts[0]["date"] == "February 27, 2026"
        assert alerts[0]["url"] == "https://www.nyc.gov/site/doh/about/press/pr2026/measles-update.page"
        assert alerts[0]["region"] == "nyc"
        assert alerts[0]["severity"] == "info"

    def test_parse_nys_news(self):
        alerts = parse_nys_news(NYS_NEWS_HTML, "https://info.nystateofhealth.ny.gov/news", "2026-03-02")

        assert len(alerts) == 2
        assert alerts[0]["date"] == "March 1, 2026"
        assert alerts[0]["url"] == "https://info.nystateofhealth.ny.gov/news/open-enrollment"
        assert alerts[1]["date"] == "2026-03-02"

    def test_parse_cdc_feed(self):
        alerts = parse_cdc_feed(feedparser.parse(CDC_RSS), NOW_ISO)

        assert len(alerts) == 1
        assert alerts[0]["title"] == "Health Advisory: Measles Cases"
        assert alerts[0]["summary"] == "Increase in measles cases."
        assert alerts[0]["region"] == "usa"
        assert alerts[0]["source"] == "CDC Health Alert Network"

    def test_alert_ids_are_stable(self):
        first = make_alert_id("nyc", "https://example.org/a", "Title")
        assert first == make_alert_id("nyc", "https://example.org/a", "Title")
        assert first != make_alert_id("nys", "https://example.org/a", "Title")
        assert first.startswith("nyc-")

    def test_dedupe_alerts(self):
        alert = {"alert_id": "nyc-abc"}
        assert dedupe_alerts([alert, dict(alert), {"alert_id": "nyc-def"}]) == [
            alert,
            {"alert_id": "nyc-def"},
        ]

    @pytest.mark.asyncio
    async def test_failed_feed_keeps_its_region(self, db_session):
        """Test a failing feed leaves that region's previous alerts in place."""
        db_session.add(
            NewsAlert(alert_id="nys-old", title="Old NYS item", severity="info", region="nys")
        )
        await db_session.commit()

        client = AsyncMock()
        client.fetch_text.side_effect = url_router(
            {
                settings.nyc_news_url: NYC_PRESS_HTML,
                settings.nys_news_url: UpstreamClientError("HTTP 502"),
                settings.cdc_rss_url: CDC_RSS,
            }
        )

        service = NewsService(db_session, client=client)
        count = await service.sync_data()
        data = await service.get_data()

        assert count == 3
        assert len(data.nyc) == 2
        assert [a.id for a in data.nys] == ["nys-old"]
        assert len(data.usa) == 1

    @pytest.mark.asyncio
    async def test_all_feeds_failing_raises(self, db_session):
        client = AsyncMock()
        client.fetch_text.side_effect = UpstreamClientError("offline")

        with pytest.raises(UpstreamClientError):
            await NewsService(db_session, client=client).sync_data()
