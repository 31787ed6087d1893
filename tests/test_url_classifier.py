import logging
from urllib.parse import urlsplit, urlparse

import pytest

from url_classifier import (IGNORE_URL, PROXIED_HOSTS, SAMPLE_CDN_PREFIXES, SAMPLE_EPUB_URL, SAMPLE_PDF_URL,
                            ClassifyContext, ConfigurationMissing, ResolvedTarget, TargetKind, UrlClassifier,
                            classify, classify_with_rule)

CONTEXT = ClassifyContext(document_path='papers/paper.pdf', media_path='books/book.epub')


def test_sample_pdf_resolves_to_declared_document():
    assert classify(SAMPLE_PDF_URL, CONTEXT) == ResolvedTarget(TargetKind.VAULT_PATH, 'papers/paper.pdf')


def test_declared_document_path_matches_itself():
    assert classify('papers/paper.pdf', CONTEXT) == ResolvedTarget.vault('papers/paper.pdf')


def test_sample_epub_resolves_to_declared_media():
    assert classify(SAMPLE_EPUB_URL, CONTEXT) == ResolvedTarget.vault('books/book.epub')
    assert classify(urlsplit(SAMPLE_EPUB_URL), CONTEXT) == ResolvedTarget.vault('books/book.epub')


def test_cdn_sample_prefixes_resolve_unless_html():
    base = SAMPLE_CDN_PREFIXES[1]
    assert classify(base + 'sample.pdf', CONTEXT) == ResolvedTarget.vault('papers/paper.pdf')
    assert classify(base + 'index.html', CONTEXT) == ResolvedTarget.pass_through(base + 'index.html')
    assert classify(urlsplit(base + 'index.html'), CONTEXT) == ResolvedTarget.archive(
        'via.hypothes.is/proxy/static/UsvswpbIZv6ZUQTERtj1CA/1641646800/index.html')


def test_missing_document_path_leaves_target_unset(caplog):
    with caplog.at_level(logging.WARNING, logger='url_classifier'):
        assert classify(SAMPLE_PDF_URL, ClassifyContext()) is None
    assert 'Missing declared document path' in caplog.text


def test_missing_media_path_leaves_target_unset():
    assert classify(SAMPLE_EPUB_URL, ClassifyContext(document_path='a.pdf')) is None


def test_require_raises_configuration_missing():
    with pytest.raises(ConfigurationMissing):
        UrlClassifier(ClassifyContext()).require(SAMPLE_PDF_URL)


def test_declared_urls_are_kept_as_is():
    remote = ClassifyContext(document_path='https://example.org/paper.pdf')
    assert classify(SAMPLE_PDF_URL, remote) == ResolvedTarget.pass_through('https://example.org/paper.pdf')

    explicit_vault = ClassifyContext(document_path='vault:/papers/other.pdf')
    assert classify(SAMPLE_PDF_URL, explicit_vault) == ResolvedTarget.vault('papers/other.pdf')


def test_profile_is_synthetic():
    url = 'http://localhost:8001/api/profile'
    assert classify(url, CONTEXT) == ResolvedTarget(TargetKind.SYNTHETIC_JSON, 'api/profile')
    assert classify(urlsplit(url), CONTEXT) == ResolvedTarget.synthetic('api/profile')


@pytest.mark.parametrize('url,key', [
    ('https://hypothes.is/api/', 'api'),
    ('http://localhost:8001/api/links', 'api/links'),
    ('http://localhost:8001/api/profile/groups?expand=organization', 'api/profile/groups'),
    ('http://localhost:8001/api/groups?document_uri=urn%3Ax', 'api/groups'),
])
def test_synthetic_endpoints(url, key):
    assert classify(urlsplit(url), CONTEXT) == ResolvedTarget.synthetic(key)


def test_profile_requires_exact_match():
    url = 'http://localhost:8001/api/profile?authority=x'
    assert classify(url, CONTEXT) == ResolvedTarget.pass_through(url)


def test_proxied_hosts_rewrite_to_archive():
    for host in PROXIED_HOSTS:
        assert classify(urlsplit(f'https://{host}/app/boot.js?v=1'), CONTEXT) == ResolvedTarget.archive(
            f'{host}/app/boot.js')


def test_parse_results_count_as_structured():
    assert classify(urlparse('https://cdn.hypothes.is/a.css'), CONTEXT) == ResolvedTarget.archive(
        'cdn.hypothes.is/a.css')


def test_tracker_hosts_are_blocked():
    assert classify(urlsplit('https://bam-cell.nr-data.net/1/abc?a=1'), CONTEXT) == ResolvedTarget.blocked()
    assert classify(urlsplit('https://js-agent.newrelic.com/nr-1.js'), CONTEXT).kind == TargetKind.BLOCKED


def test_bare_strings_skip_hostname_rules():
    tracker = 'https://bam-cell.nr-data.net/1/abc'
    asset = 'https://cdn.hypothes.is/app.js'
    assert classify(tracker, CONTEXT) == ResolvedTarget.pass_through(tracker)
    assert classify(asset, CONTEXT) == ResolvedTarget.pass_through(asset)


def test_unknown_hosts_pass_through():
    assert classify(urlsplit('https://example.com/x'), CONTEXT) == ResolvedTarget.pass_through(
        'https://example.com/x')


def test_document_placeholder_beats_proxied_host():
    url = SAMPLE_CDN_PREFIXES[0] + 'sample.pdf'
    rule, target = classify_with_rule(urlsplit(url), CONTEXT)
    assert rule == 'sample-document'
    assert target == ResolvedTarget.vault('papers/paper.pdf')


def test_rules_are_evaluated_in_fixed_order():
    assert UrlClassifier(CONTEXT).rule_names() == [
        'sample-document', 'sample-media', 'synthetic-api', 'bare-string', 'proxied-host', 'tracker', 'default',
    ]


def test_classification_is_idempotent():
    urls = [
        SAMPLE_PDF_URL,
        urlsplit(SAMPLE_CDN_PREFIXES[2] + 'x.pdf'),
        urlsplit('https://via.hypothes.is/proxy/page'),
        urlsplit('https://bam-cell.nr-data.net/1'),
        'http://localhost:8001/api/groups',
        'https://example.com/',
    ]
    classifier = UrlClassifier(CONTEXT)
    for url in urls:
        assert classifier.classify(url) == classifier.classify(url)


def test_target_hrefs():
    assert ResolvedTarget.vault('a//b.pdf').href == 'vault:/a/b.pdf'
    assert ResolvedTarget.archive('/cdn.hypothes.is/x').href == 'zip:/cdn.hypothes.is/x'
    assert ResolvedTarget.synthetic('api/profile').href == 'zip:/fake-service/api/profile.json'
    assert ResolvedTarget.blocked().href == IGNORE_URL
    assert ResolvedTarget.pass_through('https://e.org/').href == 'https://e.org/'
