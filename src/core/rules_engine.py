"""Subscription compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Iterable, List, Optional, Union

from core.models import Post, SettingsSnapshot, Subscription

LOGGER = logging.getLogger(__name__)

MATCH_TITLE = "title"
MATCH_CONTENT = "content"
MATCH_AUTHOR = "author"
MATCH_CATEGORY = "category"
MATCH_MIXED = "mixed"
MATCH_CATEGORY_OR_AUTHOR = "category_or_author"

REGEX_PREFIX = "regex:"

# JavaScript-style flags accepted in /pattern/flags; g and y have no meaning
# for a single search and are ignored.
_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
    "g": 0,
    "y": 0,
}


@dataclass(frozen=True)
class LiteralKeyword:
    """Case-insensitive substring keyword."""

    text: str

    def search(self, haystack: str) -> bool:
        return self.text.lower() in haystack.lower()


@dataclass(frozen=True)
class PatternKeyword:
    """Regex keyword compiled from a ``/pattern/flags`` or ``regex:`` directive."""

    pattern: re.Pattern
    text: str

    def search(self, haystack: str) -> bool:
        return self.pattern.search(haystack) is not None


Keyword = Union[LiteralKeyword, PatternKeyword]


def _split_directive(text: str) -> Optional[tuple[str, str]]:
    """Return (pattern, flags) when ``text`` is a regex directive."""

    if text.startswith("/"):
        last_slash = text.rfind("/")
        if last_slash > 0:
            return text[1:last_slash], text[last_slash + 1:]
    if text.lower().startswith(REGEX_PREFIX):
        return text[len(REGEX_PREFIX):], "i"
    return None


def _flags_value(flags: str) -> int:
    if not flags:
        return re.IGNORECASE
    value = 0
    for flag in flags:
        if flag not in _FLAG_MAP:
            raise re.error(f"unknown regex flag {flag!r}")
        value |= _FLAG_MAP[flag]
    return value


def compile_keyword(text: str) -> Keyword:
    """Resolve a keyword slot into a literal or a compiled pattern.

    Invalid regex syntax falls back to a literal match on the full keyword
    text and logs a warning.
    """

    directive = _split_directive(text)
    if directive is None or not directive[0]:
        return LiteralKeyword(text)

    pattern, flags = directive
    try:
        return PatternKeyword(pattern=re.compile(pattern, _flags_value(flags)), text=text)
    except re.error as exc:
        LOGGER.warning("Invalid regex keyword %r, falling back to literal match: %s", text, exc)
        return LiteralKeyword(text)


@dataclass(frozen=True)
class Rule:
    """Compiled subscription used by the matcher."""

    subscription: Subscription
    keywords: List[Keyword]
    creator_filter: str
    category_filter: str


@dataclass
class MatchDetails:
    """Which keywords were satisfied by which field."""

    title: List[str] = field(default_factory=list)
    content: List[str] = field(default_factory=list)
    author: List[str] = field(default_factory=list)
    category: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MatchResult:
    """A single subscription match with its classification."""

    subscription: Subscription
    matched_keywords: List[str]
    match_type: str
    details: MatchDetails


def build_rules(subscriptions: Iterable[Subscription]) -> List[Rule]:
    """Compile subscriptions once so per-post matching stays cheap.

    Order is preserved; it decides which match wins when several apply.
    """

    compiled: List[Rule] = []
    for sub in subscriptions:
        compiled.append(
            Rule(
                subscription=sub,
                keywords=[compile_keyword(k) for k in sub.keywords],
                creator_filter=(sub.creator or "").strip().lower(),
                category_filter=(sub.category or "").strip().lower(),
            )
        )
    return compiled


def _classify(details: MatchDetails, keyword_count: int) -> str:
    if len(details.title) == keyword_count:
        return MATCH_TITLE
    if len(details.content) == keyword_count:
        return MATCH_CONTENT
    if len(details.author) == keyword_count:
        return MATCH_AUTHOR
    if len(details.category) == keyword_count:
        return MATCH_CATEGORY
    return MATCH_MIXED


def match_rule(post: Post, rule: Rule, settings: SettingsSnapshot) -> Optional[MatchResult]:
    """Evaluate one compiled subscription against a post.

    Matching logic:
    - A creator or category filter must be a case-insensitive substring of
      the post's field, otherwise the rule does not match.
    - With no keywords, passing the filters is a match.
    - Otherwise every keyword must be found in at least one eligible field:
      title, body (unless only_title), creator (unless filtered on creator),
      category (unless filtered on category).
    """

    if not rule.keywords and not rule.creator_filter and not rule.category_filter:
        return None

    if rule.creator_filter and rule.creator_filter not in post.creator.lower():
        return None
    if rule.category_filter and rule.category_filter not in post.category.lower():
        return None

    details = MatchDetails()
    if not rule.keywords:
        return MatchResult(
            subscription=rule.subscription,
            matched_keywords=[],
            match_type=MATCH_CATEGORY_OR_AUTHOR,
            details=details,
        )

    fields = [(post.title, details.title)]
    if not settings.only_title:
        fields.append((post.summary, details.content))
    if not rule.creator_filter:
        fields.append((post.creator, details.author))
    if not rule.category_filter:
        fields.append((post.category, details.category))

    matched_keywords: List[str] = []
    for keyword in rule.keywords:
        for text, hits in fields:
            if keyword.search(text):
                hits.append(keyword.text)
                matched_keywords.append(keyword.text)
                break
        else:
            return None

    return MatchResult(
        subscription=rule.subscription,
        matched_keywords=matched_keywords,
        match_type=_classify(details, len(rule.keywords)),
        details=details,
    )


def match_rules(post: Post, rules: Iterable[Rule], settings: SettingsSnapshot) -> List[MatchResult]:
    """Return one result per matching rule, in rule order."""

    matches: List[MatchResult] = []
    for rule in rules:
        result = match_rule(post, rule, settings)
        if result is not None:
            matches.append(result)
    return matches


def match(
    post: Post,
    subscriptions: Iterable[Subscription],
    settings: SettingsSnapshot,
) -> List[MatchResult]:
    """Compile and match in one call; the processor compiles once per sweep instead."""

    return match_rules(post, build_rules(subscriptions), settings)
