"""
Settings for the generator: a YAML file validated with pydantic.

Secrets may be supplied through the environment (or a ``.env`` file) and
override the values from the file.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from .errors import ConfigError, ValidationError
from .validation import is_valid_branch_name, is_valid_repo_path, validate_include_path, validate_pattern


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "staticgen.yml"

DEFAULT_EXCLUDED_EXTENSIONS: List[str] = [
    "php", "php3", "php4", "php5", "php7", "phtml", "phps",
    "exe", "bat", "sh", "command", "com",
    "htpasswd", "ini", "conf", "config",
    "sql", "sqlite", "db",
    "git", "gitignore", "gitmodules", "svn",
    "log", "bak", "backup", "tmp", "temp",
]


# --------------------------------------------------------------------------- #
# Sections

class SiteSettings(BaseModel):
    url: str
    root: str = "."
    content_dir: Optional[str] = None
    content_export: str = "content.yml"

    @field_validator("url")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") + "/"

    @property
    def content_path(self) -> Path:
        if self.content_dir:
            return Path(self.content_dir)
        return Path(self.root) / "wp-content"


class ScheduleSettings(BaseModel):
    cron: Optional[str] = None
    interval_minutes: Optional[int] = None


class RunSettings(BaseModel):
    url_mode: str = "relative"
    timeout: float = 30
    cache_enabled: bool = True
    cache_dir: Optional[str] = None
    state_dir: str = ".staticgen"
    staging_dir: Optional[str] = None
    debug: bool = False
    auto_generate: bool = False
    commit_message: str = ""
    lock_timeout: int = 3600
    schedule: Optional[ScheduleSettings] = None

    @field_validator("url_mode")
    @classmethod
    def _known_mode(cls, value: str) -> str:
        if value not in ("relative", "absolute"):
            raise ValueError("url_mode must be 'relative' or 'absolute'")
        return value

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir) if self.cache_dir else Path(self.state_dir) / "cache"

    @property
    def staging_path(self) -> Path:
        return Path(self.staging_dir) if self.staging_dir else Path(self.state_dir) / "staging"


class AuthSettings(BaseModel):
    username: str
    password: str = ""


class CrawlSettings(BaseModel):
    parallel: bool = False
    concurrency: int = 5
    batch_size: int = 10
    max_redirects: int = 3
    auth: Optional[AuthSettings] = None


class ArchiveSettings(BaseModel):
    tag: bool = False
    date: bool = False
    author: bool = False
    post_format: bool = False
    rss: bool = True
    sitemap: bool = True
    robots_txt: bool = False


class AssemblySettings(BaseModel):
    include_paths: List[str] = Field(default_factory=list)
    exclude_patterns: List[str] = Field(default_factory=list)
    excluded_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_EXTENSIONS))

    @field_validator("exclude_patterns")
    @classmethod
    def _relative_patterns(cls, value: List[str]) -> List[str]:
        patterns = []
        for raw in value:
            if not raw.strip():
                continue
            try:
                patterns.append(validate_pattern(raw))
            except ValidationError as e:
                raise ValueError(str(e)) from None
        return patterns


# ---- publisher sections ---- #

class LocalPublisherSettings(BaseModel):
    enabled: bool = False
    path: str = "static-output"


class ZipPublisherSettings(BaseModel):
    enabled: bool = True
    output_dir: str = "."


class GitLocalPublisherSettings(BaseModel):
    enabled: bool = False
    work_dir: str = ""
    branch: str = "main"
    push_remote: bool = False


class RemoteRepoSettings(BaseModel):
    enabled: bool = False
    token: str = ""
    repo: str = ""
    branch_mode: str = "existing"
    existing_branch: str = "main"
    new_branch: str = ""
    base_branch: str = ""
    batch_size: int = 300
    batch_delay: float = 2.0
    api_url: str = ""

    nested_repo: ClassVar[bool] = False

    @model_validator(mode="before")
    @classmethod
    def _branch_shorthand(cls, data: Any) -> Any:
        # ``branch`` is accepted as the existing branch, as in git_local
        if isinstance(data, dict) and "branch" in data:
            data = dict(data)
            branch = data.pop("branch")
            data.setdefault("existing_branch", branch)
        return data

    @field_validator("branch_mode")
    @classmethod
    def _known_branch_mode(cls, value: str) -> str:
        if value not in ("existing", "new"):
            raise ValueError("branch_mode must be 'existing' or 'new'")
        return value

    @field_validator("existing_branch", "new_branch", "base_branch")
    @classmethod
    def _branch_name(cls, value: str) -> str:
        value = value.strip()
        if value and not is_valid_branch_name(value):
            raise ValueError(f"Invalid branch name: {value!r}")
        return value

    @field_validator("repo")
    @classmethod
    def _repo_path(cls, value: str) -> str:
        value = value.strip().strip("/")
        if value and not is_valid_repo_path(value, nested=cls.nested_repo):
            expected = "group/.../project" if cls.nested_repo else "owner/name"
            raise ValueError(f"Repository must look like {expected}: {value!r}")
        return value

    @model_validator(mode="after")
    def _new_branch_named(self) -> "RemoteRepoSettings":
        if self.enabled and self.branch_mode == "new" and not self.new_branch:
            raise ValueError("new_branch is required when branch_mode is 'new'")
        return self

    @property
    def branch(self) -> str:
        if self.branch_mode == "new" and self.new_branch:
            return self.new_branch
        return self.existing_branch or "main"


class GitHubSettings(RemoteRepoSettings):
    api_url: str = "https://api.github.com"
    blob_concurrency: int = 10
    retry_delays: List[float] = Field(default_factory=lambda: [10, 20, 40])
    rate_limit_cooldown: float = 60


class GitLabSettings(RemoteRepoSettings):
    api_url: str = "https://gitlab.com/api/v4"
    batch_delay: float = 3.0

    nested_repo: ClassVar[bool] = True


class CloudflareSettings(BaseModel):
    enabled: bool = False
    api_token: str = ""
    account_id: str = ""
    script_name: str = ""
    api_url: str = "https://api.cloudflare.com/client/v4"


class NetlifySettings(BaseModel):
    enabled: bool = False
    api_token: str = ""
    site_id: str = ""
    api_url: str = "https://api.netlify.com/api/v1"


class PublisherSettings(BaseModel):
    local: LocalPublisherSettings = Field(default_factory=LocalPublisherSettings)
    zip: ZipPublisherSettings = Field(default_factory=ZipPublisherSettings)
    git_local: GitLocalPublisherSettings = Field(default_factory=GitLocalPublisherSettings)
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    gitlab: GitLabSettings = Field(default_factory=GitLabSettings)
    cloudflare: CloudflareSettings = Field(default_factory=CloudflareSettings)
    netlify: NetlifySettings = Field(default_factory=NetlifySettings)


class Settings(BaseModel):
    site: SiteSettings
    run: RunSettings = Field(default_factory=RunSettings)
    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    archives: ArchiveSettings = Field(default_factory=ArchiveSettings)
    assembly: AssemblySettings = Field(default_factory=AssemblySettings)
    publishers: PublisherSettings = Field(default_factory=PublisherSettings)

    @model_validator(mode="after")
    def _includes_inside_site(self) -> "Settings":
        paths = [p.strip() for p in self.assembly.include_paths if p.strip()]
        for raw in paths:
            try:
                validate_include_path(raw, Path(self.site.root), self.site.content_path)
            except ValidationError as e:
                raise ValueError(f"assembly.include_paths: {e}") from None
        self.assembly.include_paths = paths
        return self


# --------------------------------------------------------------------------- #
# Loading

_ENV_OVERRIDES = {
    "GITHUB_TOKEN": ("publishers", "github", "token"),
    "GITLAB_TOKEN": ("publishers", "gitlab", "token"),
    "CLOUDFLARE_API_TOKEN": ("publishers", "cloudflare", "api_token"),
    "NETLIFY_API_TOKEN": ("publishers", "netlify", "api_token"),
}


def _apply_env(raw: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    for var, path in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        node = raw
        for key in path[:-1]:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]
        node[path[-1]] = value

    user = environ.get("STATICGEN_AUTH_USER")
    if user:
        if not isinstance(raw.get("crawl"), dict):
            raw["crawl"] = {}
        raw["crawl"]["auth"] = {
            "username": user,
            "password": environ.get("STATICGEN_AUTH_PASSWORD", ""),
        }
    return raw


def parse_settings(raw: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Settings:
    """Validate a settings mapping, applying environment overrides."""
    raw = _apply_env(copy.deepcopy(raw or {}), dict(os.environ if environ is None else environ))
    try:
        return Settings.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e


def load_settings(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    """Load settings from a YAML file."""
    env = os.environ if environ is None else environ
    config_path = Path(path or env.get("STATICGEN_CONFIG") or DEFAULT_CONFIG_PATH)

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    logger.debug(f"Loaded settings from {config_path}")
    return parse_settings(raw, dict(env))
