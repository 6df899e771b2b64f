import pytest
from pydantic import ValidationError as PydanticValidationError

from staticgen.config import DEFAULT_EXCLUDED_EXTENSIONS, GitHubSettings, load_settings, parse_settings
from staticgen.errors import ConfigError


def test_defaults():
    settings = parse_settings({"site": {"url": "https://example.com"}}, environ={})

    assert settings.site.url == "https://example.com/"
    assert settings.run.url_mode == "relative"
    assert settings.run.cache_enabled
    assert not settings.archives.tag
    assert settings.archives.rss and settings.archives.sitemap
    assert settings.assembly.excluded_extensions == DEFAULT_EXCLUDED_EXTENSIONS
    assert settings.publishers.zip.enabled
    assert not settings.publishers.github.enabled
    assert settings.publishers.github.batch_size == 300
    assert settings.publishers.gitlab.batch_delay == 3.0


def test_derived_paths():
    settings = parse_settings(
        {"site": {"url": "https://example.com/", "root": "/srv/www"}, "run": {"state_dir": "/var/sg"}},
        environ={},
    )
    assert str(settings.site.content_path) == "/srv/www/wp-content"
    assert str(settings.run.cache_path) == "/var/sg/cache"
    assert str(settings.run.staging_path) == "/var/sg/staging"


def test_env_overrides_secrets():
    settings = parse_settings(
        {"site": {"url": "https://example.com/"}, "publishers": {"github": {"token": "from-file"}}},
        environ={
            "GITHUB_TOKEN": "from-env",
            "NETLIFY_API_TOKEN": "nf",
            "STATICGEN_AUTH_USER": "alice",
            "STATICGEN_AUTH_PASSWORD": "pw",
        },
    )
    assert settings.publishers.github.token == "from-env"
    assert settings.publishers.netlify.api_token == "nf"
    assert settings.crawl.auth.username == "alice"
    assert settings.crawl.auth.password == "pw"


def test_branch_selection():
    settings = parse_settings(
        {
            "site": {"url": "https://example.com/"},
            "publishers": {"gitlab": {"branch_mode": "new", "new_branch": "static"}},
        },
        environ={},
    )
    assert settings.publishers.gitlab.branch == "static"
    assert settings.publishers.github.branch == "main"


@pytest.mark.parametrize("raw", [
    {},
    {"site": {"url": "https://example.com/"}, "run": {"url_mode": "sideways"}},
    {"site": {"url": "https://example.com/"}, "run": {"timeout": "soon"}},
])
def test_invalid_settings_raise_config_error(raw):
    with pytest.raises(ConfigError):
        parse_settings(raw, environ={})


def test_load_settings_from_file(tmp_path):
    path = tmp_path / "staticgen.yml"
    path.write_text("site:\n  url: https://example.com\narchives:\n  tag: true\n")

    settings = load_settings(str(path), environ={})

    assert settings.site.url == "https://example.com/"
    assert settings.archives.tag


def test_load_settings_uses_env_path(tmp_path):
    path = tmp_path / "custom.yml"
    path.write_text("site:\n  url: https://example.org/\n")
    settings = load_settings(environ={"STATICGEN_CONFIG": str(path)})
    assert settings.site.url == "https://example.org/"


def test_load_settings_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_settings(str(tmp_path / "absent.yml"), environ={})


def test_load_settings_rejects_non_mapping(tmp_path):
    path = tmp_path / "list.yml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_settings(str(path), environ={})


def remote(section, **values):
    return {"site": {"url": "https://example.com/"}, "publishers": {section: values}}


@pytest.mark.parametrize("values", [
    {"existing_branch": "../../evil branch"},
    {"existing_branch": "main.lock"},
    {"branch_mode": "new", "new_branch": "feature//x"},
    {"base_branch": "refs~1"},
    {"branch_mode": "sideways"},
    {"enabled": True, "branch_mode": "new"},
    {"repo": "just-a-name"},
    {"repo": "me/../site"},
    {"repo": "me/site/extra"},
    {"repo": "me/si te"},
])
def test_invalid_github_branch_or_repo_rejected(values):
    with pytest.raises(ConfigError):
        parse_settings(remote("github", **values), environ={})


def test_valid_remote_names_are_normalised():
    settings = parse_settings(remote("github", repo="/me/site.io/", existing_branch="release/v1-2"), environ={})
    assert settings.publishers.github.repo == "me/site.io"
    assert settings.publishers.github.branch == "release/v1-2"


def test_gitlab_allows_nested_groups():
    settings = parse_settings(remote("gitlab", repo="group/sub/site"), environ={})
    assert settings.publishers.gitlab.repo == "group/sub/site"


@pytest.mark.parametrize("pattern", ["../outside/*", "/etc/*"])
def test_invalid_exclude_pattern_rejected(pattern):
    with pytest.raises(ConfigError, match="relative to the output root"):
        parse_settings(
            {"site": {"url": "https://example.com/"}, "assembly": {"exclude_patterns": ["blog/*", pattern]}},
            environ={},
        )


def test_exclude_patterns_are_trimmed():
    settings = parse_settings(
        {"site": {"url": "https://example.com/"}, "assembly": {"exclude_patterns": [" blog/* ", " "]}},
        environ={},
    )
    assert settings.assembly.exclude_patterns == ["blog/*"]


def include_settings(root, path):
    return {
        "site": {"url": "https://example.com/", "root": str(root)},
        "assembly": {"include_paths": [str(path)]},
    }


def test_include_paths_checked_at_load(tmp_path):
    root = tmp_path / "site"
    (root / "wp-content" / "plugins" / "p").mkdir(parents=True)
    (root / "downloads").mkdir()
    outside = tmp_path / "elsewhere"
    outside.mkdir()

    settings = parse_settings(include_settings(root, root / "downloads"), environ={})
    assert settings.assembly.include_paths == [str(root / "downloads")]

    with pytest.raises(ConfigError, match="does not exist"):
        parse_settings(include_settings(root, root / "missing"), environ={})
    with pytest.raises(ConfigError, match="outside the site"):
        parse_settings(include_settings(root, outside), environ={})
    with pytest.raises(ConfigError, match="Protected directory"):
        parse_settings(include_settings(root, root / "wp-content" / "plugins" / "p"), environ={})


def test_branch_shorthand_is_validated():
    assert GitHubSettings(repo="me/site", branch="pages").branch == "pages"
    with pytest.raises(PydanticValidationError):
        GitHubSettings(enabled=True, token="t", repo="me/site", branch="../../evil branch")
