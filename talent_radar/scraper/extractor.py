"""Talent Radar — Listing Extractor.

Turns listing-page HTML into confidence-scored candidate records using
per-field selector cascades from the source's SelectorProfile. Parsing
uses selectolax (HTMLParser).

Listing discovery follows the same cascade: the primary container
selector first, then each fallback until one matches something. Within a
listing, the first rule of a field's cascade that yields a non-empty
value wins and is recorded for diagnostics. Multi-valued cascades may also
carry ``detect`` rules, which scan listing text for known technology
names and merge them into the winning values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from talent_radar.config import (
    MANDATORY_FIELDS,
    MULTI_VALUE_FIELDS,
    SelectorProfile,
    SelectorRule,
    Source,
)
from talent_radar.database.models import VacancyRecord
from talent_radar.errors import LowConfidenceExtraction, ParseError
from talent_radar.scraper.normalize import (
    clean_text,
    content_hash,
    identity_key,
    parse_salary,
    parse_work_model,
    unique,
)
from talent_radar.utils.logger import get_logger

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════


@dataclass
class Extraction:
    """Candidate record for one listing.

    Attributes:
        values: Resolved single-valued fields (field → text).
        lists: Resolved multi-valued fields (field → values).
        matched_rules: Winning rule per resolved field, for diagnostics.
        missing_fields: Configured fields that no rule resolved.
        confidence: 0-100 weighted completeness score.
        via_fallback: The listing was found by a fallback container.
    """

    values: dict[str, str] = field(default_factory=dict)
    lists: dict[str, list[str]] = field(default_factory=dict)
    matched_rules: dict[str, str] = field(default_factory=dict)
    missing_fields: list[str] = field(default_factory=list)
    confidence: int = 0
    via_fallback: bool = False

    @property
    def missing_mandatory(self) -> list[str]:
        return [name for name in MANDATORY_FIELDS if name in self.missing_fields]

    @property
    def is_acceptable(self) -> bool:
        return not self.missing_mandatory

    def to_record(self, source: Source) -> VacancyRecord:
        """Normalize into a VacancyRecord candidate (no id or timestamps yet).

        Raises:
            LowConfidenceExtraction: If title or company did not resolve.
        """
        if not self.is_acceptable:
            raise LowConfidenceExtraction(self.missing_mandatory)

        v = self.values
        salary_min, salary_max, currency = parse_salary(v.get("salary"))
        currency = clean_text(v.get("currency")).upper() or currency
        href = v.get("url", "")
        external_id = v.get("external_id") or None

        record = VacancyRecord(
            source_id=source.id,
            identity_key=identity_key(
                external_id, v["title"], v["company"], v.get("location", ""),
                use_external_id=source.stable_external_ids,
            ),
            external_id=external_id,
            url=urljoin(source.base_url, href) if href else "",
            title=v["title"],
            company=v["company"],
            location=v.get("location", ""),
            work_model=parse_work_model(v.get("work_model")),
            salary_min=salary_min,
            salary_max=salary_max,
            currency=currency,
            technologies=[t.lower() for t in self.lists.get("technologies", [])],
            responsibilities=self.lists.get("responsibilities", []),
            requirements=self.lists.get("requirements", []),
            benefits=self.lists.get("benefits", []),
            extraction_confidence=self.confidence,
        )
        record.raw_content_hash = content_hash({
            "external_id": record.external_id,
            "url": record.url,
            "title": record.title,
            "company": record.company,
            "location": record.location,
            "work_model": record.work_model,
            "salary": [record.salary_min, record.salary_max, record.currency],
            "technologies": record.technologies,
            "responsibilities": record.responsibilities,
            "requirements": record.requirements,
            "benefits": record.benefits,
        })
        return record


@dataclass
class PageExtraction:
    """Result of extracting all listings from one page.

    Attributes:
        listings: One Extraction per container node that parsed.
        container: The container selector that matched (None if none did).
        via_fallback: True when the primary container matched nothing.
        parse_errors: Messages for container nodes that failed to parse.
    """

    listings: list[Extraction] = field(default_factory=list)
    container: Optional[str] = None
    via_fallback: bool = False
    parse_errors: list[str] = field(default_factory=list)

    @property
    def found(self) -> int:
        """Container nodes found, parsed or not."""
        return len(self.listings) + len(self.parse_errors)


# ═══════════════════════════════════════════════════════════
# Node helpers
# ═══════════════════════════════════════════════════════════


def _node_text(node: Node) -> str:
    return clean_text(node.text(deep=True, separator=" ", strip=True))


def _node_value(node: Node, rule: SelectorRule) -> str:
    if rule.attr:
        return clean_text(node.attributes.get(rule.attr) or "")
    return _node_text(node)


def _apply_pattern(value: str, pattern: str) -> str:
    if not pattern or not value:
        return value
    match = re.search(pattern, value)
    if match is None:
        return ""
    return clean_text(match.group(1) if match.groups() else match.group(0))


def _select(node: Node, rule: SelectorRule) -> list[Node]:
    if not rule.selector:
        return [node]
    return list(node.css(rule.selector))


def detect_technologies(text: str, patterns: dict[str, str]) -> list[str]:
    """Return the technology names whose pattern occurs in ``text``, in pattern order."""
    if not text:
        return []
    return [
        name for name, pattern in patterns.items()
        if re.search(pattern, text, re.IGNORECASE)
    ]


# ═══════════════════════════════════════════════════════════
# Extractor
# ═══════════════════════════════════════════════════════════


class Extractor:
    """Evaluates selector cascades against listing HTML.

    Stateless apart from logging; one instance can serve every source.
    """

    def extract_listings(self, html: str, profile: SelectorProfile) -> PageExtraction:
        """Find listing containers on a page and extract each one.

        Args:
            html: Raw listing-page HTML.
            profile: The source's selector profile.

        Returns:
            PageExtraction with one Extraction per parsed container.
        """
        page = PageExtraction()
        tree = HTMLParser(html or "")

        nodes: list[Node] = []
        for index, selector in enumerate(profile.containers):
            try:
                nodes = list(tree.css(selector))
            except Exception as e:
                logger.warning("Container selector %r failed: %s", selector, e)
                continue
            if nodes:
                page.container = selector
                page.via_fallback = index > 0
                break

        if not nodes:
            logger.info("No listing containers matched (%d selectors tried)", len(profile.containers))
            return page

        if page.via_fallback:
            logger.warning(
                "Primary container %r matched nothing; using fallback %r (%d listings)",
                profile.containers[0], page.container, len(nodes),
            )

        for idx, node in enumerate(nodes):
            try:
                page.listings.append(
                    self.extract_listing(node, profile, via_fallback=page.via_fallback)
                )
            except ParseError as e:
                logger.warning("Failed to parse listing %d: %s", idx, e)
                page.parse_errors.append(f"listing {idx}: {e}")

        return page

    def extract(self, html: str, profile: SelectorProfile) -> Extraction:
        """Extract a single record treating the whole document as one listing."""
        tree = HTMLParser(html or "")
        root = tree.body if tree.body is not None else tree.root
        if root is None:
            raise ParseError("Document has no root node")
        return self.extract_listing(root, profile)

    def extract_listing(
        self,
        node: Node,
        profile: SelectorProfile,
        via_fallback: bool = False,
    ) -> Extraction:
        """Run every configured field cascade against one listing node.

        Raises:
            ParseError: If the node itself cannot be read.
        """
        result = Extraction(via_fallback=via_fallback)
        try:
            for name, rules in profile.fields.items():
                if name in MULTI_VALUE_FIELDS:
                    values, winner = self._resolve_many(
                        node, rules, name, profile.tech_patterns,
                    )
                    if values:
                        result.lists[name] = values
                        result.matched_rules[name] = winner
                    else:
                        result.missing_fields.append(name)
                else:
                    value, winner = self._resolve_one(node, rules, name)
                    if value:
                        result.values[name] = value
                        result.matched_rules[name] = winner
                    else:
                        result.missing_fields.append(name)
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"{type(e).__name__}: {e}") from e

        result.confidence = self.score(result, profile)
        if result.missing_mandatory:
            logger.debug("Listing missing mandatory fields: %s", result.missing_mandatory)
        return result

    def _resolve_one(
        self, node: Node, rules: tuple[SelectorRule, ...], name: str,
    ) -> tuple[str, str]:
        for rule in rules:
            try:
                for match in _select(node, rule):
                    value = _apply_pattern(_node_value(match, rule), rule.pattern)
                    if value:
                        return value, _describe(rule)
            except Exception as e:
                # Bad selector or broken fragment: try the next rule
                logger.debug("Rule %s for %s skipped: %s", _describe(rule), name, e)
        return "", ""

    def _resolve_many(
        self,
        node: Node,
        rules: tuple[SelectorRule, ...],
        name: str,
        tech_patterns: Optional[dict[str, str]] = None,
    ) -> tuple[list[str], str]:
        """First plain rule that yields values wins; detect rules always add to it."""
        resolved: list[str] = []
        winners: list[str] = []
        for rule in rules:
            if rule.detect or resolved:
                continue
            values: list[str] = []
            try:
                for match in _select(node, rule):
                    try:
                        values.append(_apply_pattern(_node_value(match, rule), rule.pattern))
                    except Exception as e:
                        logger.debug("Node skipped for %s: %s", name, e)
            except Exception as e:
                logger.debug("Rule %s for %s skipped: %s", _describe(rule), name, e)
                continue
            values = unique(values)
            if values:
                resolved = values
                winners.append(_describe(rule))

        for rule in rules:
            if not rule.detect:
                continue
            try:
                text = " ".join(_node_value(match, rule) for match in _select(node, rule))
            except Exception as e:
                logger.debug("Rule %s for %s skipped: %s", _describe(rule), name, e)
                continue
            detected = detect_technologies(text, tech_patterns or {})
            if detected:
                known = {value.lower() for value in resolved}
                resolved += [tech for tech in detected if tech not in known]
                winners.append(_describe(rule))

        return resolved, " + ".join(winners)

    @staticmethod
    def score(result: Extraction, profile: SelectorProfile) -> int:
        """Weighted share of configured fields that resolved, 0-100.

        Mandatory fields always count towards the total. A fallback
        container costs ``profile.fallback_penalty`` points.
        """
        considered = set(profile.fields) | set(MANDATORY_FIELDS)
        total = sum(profile.weights.get(name, 0) for name in considered)
        if total <= 0:
            return 0
        resolved = sum(
            profile.weights.get(name, 0)
            for name in considered
            if name in result.values or name in result.lists
        )
        score = round(100 * resolved / total)
        if result.via_fallback:
            score -= profile.fallback_penalty
        return max(0, min(100, score))


def _describe(rule: SelectorRule) -> str:
    desc = rule.selector or ":self"
    if rule.attr:
        desc += f"@{rule.attr}"
    if rule.pattern:
        desc += f" ~/{rule.pattern}/"
    if rule.detect:
        desc += " detect"
    return desc
