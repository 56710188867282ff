"""Unit tests for selector-cascade extraction.

All tests are pure-unit -- HTML is built inline, no network.
"""

import pytest

from talent_radar.config import build_selector_profile
from talent_radar.errors import LowConfidenceExtraction
from talent_radar.scraper.extractor import Extractor


def _profile(fields=None, containers=None, **extra):
    data = {
        "containers": containers or [".job-list-item", "article.job"],
        "fields": fields or {
            "title": [".job-title", "h2"],
            "company": [".company-name"],
            "location": [".location"],
        },
    }
    data.update(extra)
    return build_selector_profile(data)


@pytest.fixture()
def extractor():
    return Extractor()


# ======================================================================
# Listing discovery
# ======================================================================


class TestContainerCascade:

    def test_three_listings_without_location(self, extractor, listing_html):
        html = listing_html([
            {"title": "Java Developer", "company": "Acme"},
            {"title": "Senior Java Engineer", "company": "Globex"},
            {"title": "Backend Developer", "company": "Initech"},
        ])
        page = extractor.extract_listings(html, _profile())

        assert page.container == ".job-list-item"
        assert page.via_fallback is False
        assert len(page.listings) == 3
        # 60 of 70 weight resolved → 86
        assert [l.confidence for l in page.listings] == [86, 86, 86]
        assert all(l.missing_fields == ["location"] for l in page.listings)

    def test_fallback_container_used_when_primary_matches_nothing(self, extractor, listing_html):
        html = listing_html(
            [{"title": f"Role {i}", "company": "Acme", "location": "Sofia"} for i in range(5)],
            container_class="job",
            tag="article",
        )
        page = extractor.extract_listings(html, _profile())

        assert page.container == "article.job"
        assert page.via_fallback is True
        assert len(page.listings) == 5
        assert all(l.via_fallback for l in page.listings)
        assert all(l.confidence == 90 for l in page.listings)
        assert all(l.confidence < 100 for l in page.listings)

    def test_no_container_matches(self, extractor):
        page = extractor.extract_listings("<html><body><p>Nothing here</p></body></html>", _profile())
        assert page.listings == []
        assert page.found == 0
        assert page.container is None

    def test_empty_document(self, extractor):
        page = extractor.extract_listings("", _profile())
        assert page.found == 0


# ======================================================================
# Field cascades
# ======================================================================


class TestFieldCascades:

    def test_later_rule_used_when_first_yields_nothing(self, extractor):
        html = """
        <div class="job-list-item">
          <h2>  Platform   Engineer </h2>
          <span class="company-name">Acme</span>
        </div>
        """
        result = extractor.extract(html, _profile())
        assert result.values["title"] == "Platform Engineer"
        assert result.matched_rules["title"] == "h2"
        assert result.matched_rules["company"] == ".company-name"

    def test_empty_match_falls_through(self, extractor):
        html = """
        <div class="job-list-item">
          <h6 class="job-title">   </h6>
          <h2>QA Engineer</h2>
          <span class="company-name">Acme</span>
        </div>
        """
        result = extractor.extract(html, _profile())
        assert result.values["title"] == "QA Engineer"

    def test_pattern_takes_first_group(self, extractor):
        profile = _profile(fields={
            "title": [".job-title"],
            "company": [".company-name"],
            "location": [{"selector": ".location", "pattern": r"^([^,]+)"}],
        })
        html = """
        <div class="job-list-item">
          <h6 class="job-title">Dev</h6>
          <span class="company-name">Acme</span>
          <span class="location">Sofia, Bulgaria</span>
        </div>
        """
        result = extractor.extract(html, profile)
        assert result.values["location"] == "Sofia"
        assert result.confidence == 100

    def test_unmatched_pattern_counts_as_missing(self, extractor):
        profile = _profile(fields={
            "title": [".job-title"],
            "company": [".company-name"],
            "salary": [{"selector": ".salary", "pattern": r"(\d+)"}],
        })
        html = """
        <div class="job-list-item">
          <h6 class="job-title">Dev</h6>
          <span class="company-name">Acme</span>
          <span class="salary">Negotiable</span>
        </div>
        """
        result = extractor.extract(html, profile)
        assert "salary" in result.missing_fields

    def test_technologies_from_image_titles_deduplicated(self, extractor):
        profile = _profile(fields={
            "title": [".job-title"],
            "company": [".company-name"],
            "technologies": [
                ".tech-stack span",
                {"selector": "img[title]", "attr": "title"},
            ],
        })
        html = """
        <div class="job-list-item">
          <h6 class="job-title">Dev</h6>
          <span class="company-name">Acme</span>
          <img title="Java"><img title="java"><img title="Spring"><img alt="no title">
        </div>
        """
        result = extractor.extract(html, profile)
        assert result.lists["technologies"] == ["Java", "Spring"]
        assert result.matched_rules["technologies"] == "img[title]@title"

    def test_detected_technologies_merge_with_image_titles(self, extractor):
        profile = _profile(fields={
            "title": [".job-title"],
            "company": [".company-name"],
            "technologies": [
                {"selector": "img[title]", "attr": "title"},
                {"selector": "", "detect": True},
            ],
        })
        html = """
        <div class="job-list-item">
          <h6 class="job-title">Java Developer</h6>
          <span class="company-name">Acme</span>
          <p>Spring Boot services on Kubernetes, some JavaScript</p>
          <img title="Java"><img title="Docker">
        </div>
        """
        result = extractor.extract(html, profile)
        assert result.lists["technologies"] == [
            "Java", "Docker", "spring", "kubernetes", "javascript",
        ]
        assert result.matched_rules["technologies"] == "img[title]@title + :self detect"

    def test_detection_alone_resolves_technologies(self, extractor):
        profile = _profile(fields={
            "title": [".job-title"],
            "company": [".company-name"],
            "technologies": [{"selector": "", "detect": True}],
        })
        html = """
        <div class="job-list-item">
          <h6 class="job-title">Python Engineer</h6>
          <span class="company-name">Acme</span>
          <p>Django, PostgreSQL and a bit of Redis. Interest in the rest of the stack.</p>
        </div>
        """
        result = extractor.extract(html, profile)
        assert result.lists["technologies"] == ["postgresql", "python", "django", "redis"]

    def test_detection_respects_custom_patterns(self, extractor):
        profile = _profile(
            fields={
                "title": [".job-title"],
                "company": [".company-name"],
                "technologies": [{"selector": ".description", "detect": True}],
            },
            tech_patterns={"java": None, "go": r"\b(?:go|golang)\b"},
        )
        html = """
        <div class="job-list-item">
          <h6 class="job-title">Java and Golang Developer</h6>
          <span class="company-name">Acme</span>
          <p class="description">Golang microservices; Java is a plus</p>
        </div>
        """
        result = extractor.extract(html, profile)
        assert result.lists["technologies"] == ["microservices", "go"]

    def test_attribute_of_listing_node_itself(self, extractor):
        profile = _profile(fields={
            "title": [".job-title"],
            "company": [".company-name"],
            "external_id": [{"selector": "", "attr": "data-id"}],
        })
        html = '<div class="job-list-item" data-id="4711"><h6 class="job-title">Dev</h6><span class="company-name">Acme</span></div>'
        page = extractor.extract_listings(html, profile)
        assert page.listings[0].values["external_id"] == "4711"

    def test_malformed_selector_is_skipped(self, extractor):
        profile = _profile(fields={
            "title": ["div[[[", ".job-title"],
            "company": [".company-name"],
        })
        html = '<div class="job-list-item"><h6 class="job-title">Dev</h6><span class="company-name">Acme</span></div>'
        page = extractor.extract_listings(html, profile)
        assert page.listings[0].values["title"] == "Dev"
        assert page.parse_errors == []


# ======================================================================
# Confidence
# ======================================================================


class TestConfidence:

    def test_mandatory_only_profile_scores_full(self, extractor):
        profile = _profile(fields={"title": [".job-title"], "company": [".company-name"]})
        html = '<div class="job-list-item"><h6 class="job-title">Dev</h6><span class="company-name">Acme</span></div>'
        assert extractor.extract(html, profile).confidence == 100

    def test_missing_company_is_not_acceptable(self, extractor):
        html = '<div class="job-list-item"><h6 class="job-title">Dev</h6></div>'
        result = extractor.extract(html, _profile())
        assert result.missing_mandatory == ["company"]
        assert result.is_acceptable is False
        # title 30 of 70
        assert result.confidence == 43

    def test_fallback_penalty_clamped_at_zero(self, extractor, listing_html):
        profile = _profile(fallback_penalty=100)
        html = listing_html([{"title": "Dev", "company": "Acme"}], container_class="job", tag="article")
        page = extractor.extract_listings(html, profile)
        assert page.listings[0].confidence == 0

    def test_custom_weights(self, extractor):
        profile = _profile(weights={"location": 40})
        html = '<div class="job-list-item"><h6 class="job-title">Dev</h6><span class="company-name">Acme</span></div>'
        # 60 of 100
        assert extractor.extract(html, profile).confidence == 60


# ======================================================================
# Normalization into records
# ======================================================================


class TestToRecord:

    def test_record_fields_are_normalized(self, extractor, make_source, listing_html):
        source = make_source(fields={
            "title": [".job-title"],
            "company": [".company-name"],
            "location": [".location"],
            "salary": [".salary"],
            "work_model": [".badge"],
            "url": [{"selector": "a.overlay-link", "attr": "href"}],
            "technologies": [{"selector": "img[title]", "attr": "title"}],
        })
        html = listing_html([{
            "title": "Java Developer",
            "company": "Acme",
            "location": "Sofia",
            "salary": "4 500 - 9 500 лв",
            "work_model": "Fully Remote",
            "href": "/jobads/java-developer-123/",
            "tech": ["Java", "PostgreSQL"],
        }])
        listing = extractor.extract_listings(html, source.selectors).listings[0]
        record = listing.to_record(source)

        assert record.source_id == source.id
        assert record.salary_min == 4500
        assert record.salary_max == 9500
        assert record.currency == "BGN"
        assert record.work_model == "remote"
        assert record.url == "https://jobs.example.com/jobads/java-developer-123/"
        assert record.technologies == ["java", "postgresql"]
        assert record.identity_key.startswith("hash:")
        assert record.raw_content_hash
        assert record.id == ""

    def test_missing_mandatory_raises(self, extractor, make_source):
        source = make_source()
        html = '<div class="job-list-item"><span class="company-name">Acme</span></div>'
        listing = extractor.extract_listings(html, source.selectors).listings[0]
        with pytest.raises(LowConfidenceExtraction) as exc:
            listing.to_record(source)
        assert exc.value.missing == ["title"]

    def test_external_id_used_when_source_declares_stable_ids(self, extractor, make_source):
        source = make_source(
            stable_external_ids=True,
            fields={
                "title": [".job-title"],
                "company": [".company-name"],
                "external_id": [{"selector": "", "attr": "data-id"}],
            },
        )
        html = '<div class="job-list-item" data-id="4711"><h6 class="job-title">Dev</h6><span class="company-name">Acme</span></div>'
        record = extractor.extract_listings(html, source.selectors).listings[0].to_record(source)
        assert record.identity_key == "ext:4711"
        assert record.external_id == "4711"

    def test_markup_change_keeps_content_hash(self, extractor, make_source):
        source = make_source()
        before = '<div class="job-list-item"><h6 class="job-title">Dev</h6><span class="company-name">Acme</span></div>'
        after = (
            '<div class="job-list-item"><div class="wrap"><h6 class="job-title"> Dev </h6></div>'
            '<p><span class="company-name">Acme</span></p></div>'
        )
        a = extractor.extract_listings(before, source.selectors).listings[0].to_record(source)
        b = extractor.extract_listings(after, source.selectors).listings[0].to_record(source)
        assert a.identity_key == b.identity_key
        assert a.raw_content_hash == b.raw_content_hash
