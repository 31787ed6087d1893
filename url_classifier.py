# url_classifier.py - Maps outbound URLs of the embedded annotator onto local targets

import logging
from enum import Enum
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union
from urllib.parse import SplitResult, ParseResult, urlsplit

from resource_store import normalize_path

logger = logging.getLogger('url_classifier')

UrlLike = Union[str, SplitResult, ParseResult]

# Placeholders the embedded viewer is pointed at instead of a real document
SAMPLE_PDF_URL = 'https://sample.annotator.invalid/sample.pdf'
SAMPLE_EPUB_URL = 'https://sample.annotator.invalid/sample.epub'

# Versioned CDN copies of the sample document; the .html pages under them stay remote
SAMPLE_CDN_PREFIXES = (
    'https://via.hypothes.is/proxy/static/xP1ZVAo-CVhW7kwNneW_oQ/1628964000/',
    'https://via.hypothes.is/proxy/static/UsvswpbIZv6ZUQTERtj1CA/1641646800/',
    'https://via.hypothes.is/proxy/static/VpXumaaWJSJVxmHv4EqN2g/1641916800/',
)

API_BASE = 'http://localhost:8001/api'

# Pattern -> synthetic key. A trailing * means prefix match.
SYNTHETIC_ENDPOINTS = (
    ('https://hypothes.is/api/', 'api'),
    (f'{API_BASE}/links', 'api/links'),
    (f'{API_BASE}/profile', 'api/profile'),
    (f'{API_BASE}/profile/groups*', 'api/profile/groups'),
    (f'{API_BASE}/groups*', 'api/groups'),
)

PROXIED_HOSTS = frozenset(['cdn.hypothes.is', 'via.hypothes.is', 'hypothes.is'])
TRACKER_HOSTS = frozenset(['js-agent.newrelic.com', 'bam-cell.nr-data.net'])

IGNORE_URL = 'junk:/ignore'


class ConfigurationMissing(Exception):
    """A declared document or media path was needed but not configured."""


class TargetKind(Enum):
    VAULT_PATH = "vault"
    ARCHIVE_PATH = "zip"
    SYNTHETIC_JSON = "synthetic"
    BLOCKED = "blocked"
    PASS_THROUGH = "pass_through"


@dataclass(frozen=True)
class ResolvedTarget:
    """Where a URL should be served from."""
    kind: TargetKind
    value: str = ''

    @classmethod
    def vault(cls, path: str) -> 'ResolvedTarget':
        return cls(TargetKind.VAULT_PATH, normalize_path(path))

    @classmethod
    def archive(cls, path: str) -> 'ResolvedTarget':
        return cls(TargetKind.ARCHIVE_PATH, normalize_path(path))

    @classmethod
    def synthetic(cls, key: str) -> 'ResolvedTarget':
        return cls(TargetKind.SYNTHETIC_JSON, key)

    @classmethod
    def blocked(cls) -> 'ResolvedTarget':
        return cls(TargetKind.BLOCKED)

    @classmethod
    def pass_through(cls, url: str) -> 'ResolvedTarget':
        return cls(TargetKind.PASS_THROUGH, url)

    @property
    def href(self) -> str:
        """Internal URL form of the target."""
        if self.kind == TargetKind.VAULT_PATH:
            return f"vault:/{self.value}"
        if self.kind == TargetKind.ARCHIVE_PATH:
            return f"zip:/{self.value}"
        if self.kind == TargetKind.SYNTHETIC_JSON:
            return f"zip:/fake-service/{self.value}.json"
        if self.kind == TargetKind.BLOCKED:
            return IGNORE_URL
        return self.value


@dataclass(frozen=True)
class ClassifyContext:
    """Per-embedding context: the declared document and media paths."""
    document_path: Optional[str] = None
    media_path: Optional[str] = None


# A rule answers None when it does not apply, UNRESOLVED when it applies but
# has no configured path to point at.
UNRESOLVED = object()
RuleResult = Optional[object]


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    apply: Callable[[str, Optional[SplitResult], ClassifyContext], RuleResult]


def pattern_matches(pattern: str, href: str) -> bool:
    """Exact match, or prefix match when the pattern ends in *."""
    if pattern == href:
        return True
    if pattern.endswith('*'):
        return href.startswith(pattern[:-1])
    return False


def declared_target(declared: str) -> ResolvedTarget:
    """Absolute URLs are kept as they are; anything else is a vault path."""
    parts = urlsplit(declared)
    if parts.scheme and len(parts.scheme) > 1:
        if parts.scheme == 'vault':
            return ResolvedTarget.vault(parts.path)
        return ResolvedTarget.pass_through(parts.geturl())
    return ResolvedTarget.vault(declared)


def _is_sample_document(href: str, context: ClassifyContext) -> bool:
    if href == SAMPLE_PDF_URL:
        return True
    if context.document_path is not None and href == context.document_path:
        return True
    return href.startswith(SAMPLE_CDN_PREFIXES) and not href.endswith('.html')


def _is_sample_media(href: str, context: ClassifyContext) -> bool:
    return href == SAMPLE_EPUB_URL or (context.media_path is not None and href == context.media_path)


def _sample_document_rule(href, parts, context):
    if not _is_sample_document(href, context):
        return None
    if context.document_path is None:
        logger.warning('Missing declared document path')
        return UNRESOLVED
    return declared_target(context.document_path)


def _sample_media_rule(href, parts, context):
    if not _is_sample_media(href, context):
        return None
    if context.media_path is None:
        logger.warning('Missing declared media path')
        return UNRESOLVED
    return declared_target(context.media_path)


def _synthetic_api_rule(href, parts, context):
    for pattern, key in SYNTHETIC_ENDPOINTS:
        if pattern_matches(pattern, href):
            return ResolvedTarget.synthetic(key)
    return None


def _bare_string_rule(href, parts, context):
    # Hostname rewriting only applies to structured URLs
    if parts is None:
        return ResolvedTarget.pass_through(href)
    return None


def _proxied_host_rule(href, parts, context):
    if parts.hostname in PROXIED_HOSTS:
        return ResolvedTarget.archive(f"{parts.hostname}{parts.path}")
    return None


def _tracker_rule(href, parts, context):
    if parts.hostname in TRACKER_HOSTS:
        return ResolvedTarget.blocked()
    return None


def _default_rule(href, parts, context):
    return ResolvedTarget.pass_through(href)


# Evaluated top to bottom, first match wins
RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule('sample-document', _sample_document_rule),
    ClassificationRule('sample-media', _sample_media_rule),
    ClassificationRule('synthetic-api', _synthetic_api_rule),
    ClassificationRule('bare-string', _bare_string_rule),
    ClassificationRule('proxied-host', _proxied_host_rule),
    ClassificationRule('tracker', _tracker_rule),
    ClassificationRule('default', _default_rule),
)


def as_href(url: UrlLike) -> str:
    if isinstance(url, str):
        return url
    return url.geturl()


def classify_with_rule(url: UrlLike, context: ClassifyContext,
                       rules: Tuple[ClassificationRule, ...] = RULES) -> Tuple[str, Optional[ResolvedTarget]]:
    """Classify a URL and report which rule decided it."""
    href = as_href(url)
    parts = None if isinstance(url, str) else urlsplit(href)
    for rule in rules:
        result = rule.apply(href, parts, context)
        if result is None:
            continue
        if result is UNRESOLVED:
            return rule.name, None
        return rule.name, result
    return 'default', ResolvedTarget.pass_through(href)


def classify(url: UrlLike, context: ClassifyContext) -> Optional[ResolvedTarget]:
    """
    Map a URL to the target it should be served from.

    Strings are only matched against the document placeholders and the synthetic
    API endpoints; structured URLs (urlsplit/urlparse results) also go through
    hostname rewriting and tracker blocking.

    Returns None when the URL is a document placeholder but no document path
    was declared. Callers must not fetch anything in that case.
    """
    return classify_with_rule(url, context)[1]


class UrlClassifier:
    """Classifier bound to one embedding's context."""

    def __init__(self, context: ClassifyContext):
        self.context = context

    def classify(self, url: UrlLike) -> Optional[ResolvedTarget]:
        return classify(url, self.context)

    def require(self, url: UrlLike) -> ResolvedTarget:
        """Like classify, but raise ConfigurationMissing instead of returning None."""
        target = self.classify(url)
        if target is None:
            raise ConfigurationMissing(f"No declared path for {as_href(url)}")
        return target

    def rule_names(self) -> List[str]:
        return [rule.name for rule in RULES]
