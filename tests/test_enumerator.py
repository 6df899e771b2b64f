from staticgen.enumerator import FEED_PATHS, SITEMAP_PATHS, UrlEnumerator
from staticgen.transformer import url_to_path

from conftest import SITE


def urls(source, settings):
    return [u.url for u in UrlEnumerator(source, settings).enumerate()]


def test_default_enumeration(source, make_settings):
    enumerator = UrlEnumerator(source, make_settings())
    units = enumerator.enumerate()
    found = [u.url for u in units]

    assert found[0] == SITE
    assert found[1] == f"{SITE}page/2/"
    assert f"{SITE}2024/05/first/" in found
    assert f"{SITE}about/" in found
    assert f"{SITE}products/widget/" in found
    assert f"{SITE}products/" in found
    assert f"{SITE}category/news/" in found
    assert f"{SITE}category/news/page/2/" in found
    assert f"{SITE}genre/jazz/" in found
    assert f"{SITE}genre/jazz/page/2/" not in found

    # drafts, private types and empty terms are skipped
    assert f"{SITE}2024/06/draft/" not in found
    assert f"{SITE}internal/x/" not in found
    assert f"{SITE}category/empty/" not in found

    for path in FEED_PATHS + SITEMAP_PATHS:
        assert SITE + path in found

    assert enumerator.url_to_content_id[f"{SITE}about/"] == 10
    by_url = {u.url: u for u in units}
    assert by_url[f"{SITE}2024/05/first/"].content_id == 1
    assert by_url[f"{SITE}category/news/"].discovered_from == "category"


def test_entities_come_in_id_order(source, make_settings):
    found = urls(source, make_settings())
    posts = [u for u in found if u.startswith(f"{SITE}2024/")]
    assert posts == [f"{SITE}2024/05/first/", f"{SITE}2024/05/second/", f"{SITE}2024/06/third/"]


def test_enumeration_is_deterministic_and_unique(source, make_settings):
    settings = make_settings(archives={"tag": True, "date": True, "author": True, "post_format": True})
    first = urls(source, settings)
    assert first == urls(source, settings)
    assert len(first) == len(set(first))


def test_paths_are_injective(source, make_settings):
    settings = make_settings(archives={"tag": True, "date": True, "author": True, "post_format": True})
    found = urls(source, settings)
    paths = [url_to_path(u) for u in found]
    assert len(paths) == len(set(paths))


def test_tag_archives_toggle_only_adds_tag_urls(source, make_settings):
    without = urls(source, make_settings())
    with_tags = urls(source, make_settings(archives={"tag": True}))

    assert not any("/tag/" in u for u in without)
    assert not any("post_tag" in u for u in without)

    added = set(with_tags) - set(without)
    assert added == {f"{SITE}tag/intro/", f"{SITE}wp-sitemap-taxonomies-post_tag-1.xml"}
    assert set(without) <= set(with_tags)

    # existing pages keep their output paths
    common = [u for u in with_tags if u in without]
    assert [url_to_path(u) for u in common] == [url_to_path(u) for u in without]


def test_date_archives(source, make_settings):
    found = urls(source, make_settings(archives={"date": True}))
    for expected in ("2024/", "2024/06/", "2024/06/01/", "2024/05/", "2024/05/06/"):
        assert SITE + expected in found
    assert found.count(f"{SITE}2024/") == 1


def test_author_archives_skip_authors_without_posts(source, make_settings):
    found = urls(source, make_settings(archives={"author": True}))
    assert f"{SITE}author/admin/" in found
    assert f"{SITE}author/admin/page/2/" in found
    assert f"{SITE}author/ghost/" not in found
    assert f"{SITE}wp-sitemap-users-1.xml" in found


def test_feeds_and_sitemaps_can_be_disabled(source, make_settings):
    found = urls(source, make_settings(archives={"rss": False, "sitemap": False}))
    assert not any("feed" in u or u.endswith(".xml") for u in found)
