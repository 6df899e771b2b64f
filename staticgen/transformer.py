"""
Page post-processing: URL rewriting and dynamic-element stripping.

Every rule is a pure function over text so each can be tested on its own;
:class:`PageTransformer` composes them for a configured site.
"""

import re
from typing import Iterable, List, Sequence, Tuple
from urllib.parse import urlsplit


# --------------------------------------------------------------------------- #
# Base URL variants

def _scheme_variants(url: str) -> List[str]:
    https = re.sub(r"^http://", "https://", url)
    http = re.sub(r"^https://", "http://", url)
    return [https, http]


def url_variants(base_urls: Iterable[str], trailing_slash: bool = True) -> List[str]:
    """http/https forms of each base URL, with or without the trailing slash.

    Longest first, so a home URL under a site URL is replaced before its prefix.
    """
    variants: List[str] = []
    for base in base_urls:
        stem = base.rstrip("/")
        form = stem + "/" if trailing_slash else stem
        for variant in _scheme_variants(form):
            if variant not in variants:
                variants.append(variant)
    return sorted(variants, key=len, reverse=True)


def _replace_all(text: str, needles: Sequence[str], replacement: str) -> str:
    for needle in needles:
        text = text.replace(needle, replacement)
    return text


# --------------------------------------------------------------------------- #
# Rules

_STYLE_BLOCK = re.compile(r"<style([^>]*)>(.*?)</style>", re.I | re.S)
_CSS_URL = re.compile(r"""url\s*\(\s*(['"]?)([^'")]+)\1\s*\)""", re.I)
_DOUBLE_SLASH = re.compile(r"""(?<!:)(?<!["'])//+(?![/#\s])""")


def convert_to_relative_urls(html: str, base_urls: Sequence[str]) -> str:
    """Rewrite absolute links to the site into root-relative ones."""
    with_slash = url_variants(base_urls, trailing_slash=True)
    no_slash = url_variants(base_urls, trailing_slash=False)

    # JSON-escaped forms (inline scripts)
    html = _replace_all(html, [u.replace("/", "\\/") for u in with_slash], "\\/")
    html = _replace_all(html, [u.replace("/", "\\/") for u in no_slash], "")

    def rewrite_css_url(match: re.Match) -> str:
        quote, url = match.group(1), match.group(2)
        if url.startswith("data:") or url.startswith("#"):
            return match.group(0)
        rewritten = _replace_all(url, with_slash, "/")
        rewritten = _replace_all(rewritten, no_slash, "")
        if rewritten == url:
            return match.group(0)
        if not rewritten.startswith("/") and not rewritten.startswith("http"):
            rewritten = "/" + rewritten
        return f"url({quote}{rewritten}{quote})"

    def rewrite_style(match: re.Match) -> str:
        css = _CSS_URL.sub(rewrite_css_url, match.group(2))
        return f"<style{match.group(1)}>{css}</style>"

    html = _STYLE_BLOCK.sub(rewrite_style, html)

    html = _replace_all(html, with_slash, "/")
    html = _replace_all(html, [u + "/" for u in no_slash], "/")

    return _DOUBLE_SLASH.sub("/", html)


def convert_xml_urls(xml: str, base_urls: Sequence[str]) -> str:
    """Feeds and sitemaps only get their with-slash base URLs rewritten."""
    return _replace_all(xml, url_variants(base_urls, trailing_slash=True), "/")


_DYNAMIC_PATTERNS = [
    re.compile(r"""<input[^>]*name=['"]_wpnonce['"][^>]*>""", re.I),
    re.compile(r"""<input[^>]*name=['"]_wp_http_referer['"][^>]*>""", re.I),
    re.compile(r"""<link[^>]*rel=['"]https://api\.w\.org/?['"][^>]*>""", re.I),
    re.compile(r"""<link[^>]*type=['"]application/json\+oembed['"][^>]*>""", re.I),
    re.compile(r"""<link[^>]*type=['"]text/xml\+oembed['"][^>]*>""", re.I),
]


def strip_dynamic_elements(html: str) -> str:
    """Remove nonce fields and API discovery links that are useless offline."""
    for pattern in _DYNAMIC_PATTERNS:
        html = pattern.sub("", html)
    return html


_ANCHOR = re.compile(r"<a\s([^>]*)>((?:(?!</a\s*>).)*?)</a\s*>", re.I | re.S)
_HREF = re.compile(r"""\bhref\s*=\s*(['"])([^'"]*)\1""", re.I)
_REL = re.compile(r"""\brel\s*=\s*(['"])([^'"]*)\1""", re.I)
_DATE_HREF = re.compile(r"/\d{4}/\d{2}/(?:\d{2}/)?$")


def _attr(pattern: re.Pattern, attrs: str) -> str:
    match = pattern.search(attrs)
    return match.group(2) if match else ""


def neutralize_archive_links(html: str, tag: bool, date: bool, author: bool) -> str:
    """Turn links to disabled archive types into plain text.

    ``tag``/``date``/``author`` say whether that archive is generated; links
    to archives that are not generated would 404 in the snapshot.
    """
    if tag and date and author:
        return html

    def replace(match: re.Match) -> str:
        attrs = match.group(1)
        href = _attr(_HREF, attrs)
        rels = _attr(_REL, attrs).lower().split()

        if not tag and ("tag" in rels or "/tag/" in href):
            return f"<span>{match.group(2)}</span>"
        if not date and href and _DATE_HREF.search(href):
            return f"<span>{match.group(2)}</span>"
        if not author and ("author" in rels or re.search(r"/author/[^/]", href)):
            return f"<span>{match.group(2)}</span>"
        return match.group(0)

    return _ANCHOR.sub(replace, html)


def check_structure(html: str) -> List[str]:
    warnings = []
    if "</html>" not in html:
        warnings.append("missing </html>")
    if "<body" not in html:
        warnings.append("missing <body>")
    return warnings


_FEED_PATH = re.compile(r"/(feed|rss|atom)(/.*)?$")
_EXTENSION = re.compile(r"\.[a-z0-9]+$", re.I)


def is_xml(url: str, body: str) -> bool:
    """Feeds by path segment, sitemaps by extension, anything else by its prolog."""
    path = urlsplit(url).path.rstrip("/")
    return bool(_FEED_PATH.search(path)) or path.endswith(".xml") or body.startswith("<?xml")


def url_to_path(url: str) -> str:
    """Staging-relative file path for a page URL."""
    path = urlsplit(url).path.rstrip("/")
    if not path:
        return "index.html"

    if _FEED_PATH.search(path):
        path += "/index.xml"
    elif not _EXTENSION.search(path):
        path += "/index.html"

    return path.lstrip("/")


_ASSET_CSS_URL = re.compile(r"""url\s*\(\s*['"]?([^'")]+)['"]?\s*\)""", re.I)
_ASSET_IMPORT = re.compile(r"""@import\s+['"]([^'")]+)['"]""", re.I)
_WP_JSON = re.compile(r"""/wp-json/[^'"\s]*""", re.I)


def convert_asset_urls(content: str, kind: str, base_urls: Sequence[str]) -> str:
    """Rewrite site URLs inside a copied CSS or JS file."""
    with_slash = url_variants(base_urls, trailing_slash=True)

    if kind == "css":
        content = _ASSET_CSS_URL.sub(
            lambda m: f"url({_replace_all(m.group(1), with_slash, '/')})", content
        )
        content = _ASSET_IMPORT.sub(
            lambda m: f'@import "{_replace_all(m.group(1), with_slash, "/")}"', content
        )

    content = _replace_all(content, with_slash, "/")

    if kind == "js":
        content = content.replace("/wp-admin/admin-ajax.php", "#")
        content = _WP_JSON.sub("#", content)

    return content


# --------------------------------------------------------------------------- #
# Composition

class PageTransformer:
    """Applies the rewrite rules configured for one site."""

    def __init__(
        self,
        site_url: str,
        home_url: str,
        relative: bool = True,
        tag_archive: bool = False,
        date_archive: bool = False,
        author_archive: bool = False,
    ):
        self.base_urls = [site_url, home_url]
        self.relative = relative
        self.tag_archive = tag_archive
        self.date_archive = date_archive
        self.author_archive = author_archive

    def transform(self, url: str, body: str) -> Tuple[str, List[str]]:
        """Return the transformed body and any structural warnings."""
        if is_xml(url, body):
            if self.relative:
                body = convert_xml_urls(body, self.base_urls)
            return body, []

        original_size = len(body)
        if self.relative:
            body = convert_to_relative_urls(body, self.base_urls)
        body = strip_dynamic_elements(body)
        body = neutralize_archive_links(
            body, self.tag_archive, self.date_archive, self.author_archive
        )

        warnings = []
        if len(body) < original_size * 0.1:
            warnings.append(f"HTML size dropped sharply: {url} - {original_size:,} -> {len(body):,} bytes")
        warnings.extend(f"Incomplete HTML structure ({w}): {url}" for w in check_structure(body))
        return body, warnings

    def convert_asset(self, content: str, kind: str) -> str:
        return convert_asset_urls(content, kind, self.base_urls)
