from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kana.validators import validate_php_version


class SiteType(str, Enum):
    SITE = "site"
    PLUGIN = "plugin"
    THEME = "theme"


class SiteOptions(BaseModel):
    """Per-site options, validated once when the command starts."""

    model_config = ConfigDict(extra="forbid")

    type: SiteType = SiteType.SITE
    php: str = "8.1"
    xdebug: bool = False
    local: bool = False
    plugins: list[str] = Field(default_factory=list)

    @field_validator("php")
    @classmethod
    def _check_php(cls, value: str) -> str:
        return validate_php_version(value)


class SiteIdentity(BaseModel):
    """Names and URLs derived from a site name. Immutable for one command."""

    model_config = ConfigDict(frozen=True)

    name: str
    directory: Path
    domain: str
    url: str
    secure_url: str

    @classmethod
    def derive(cls, name: str, sites_directory: Path, app_domain: str) -> "SiteIdentity":
        domain = f"{name}.{app_domain}"
        return cls(
            name=name,
            directory=sites_directory / name,
            domain=domain,
            url=f"http://{domain}/",
            secure_url=f"https://{domain}/",
        )


class PluginInfo(BaseModel):
    name: str
    status: str
    update: str = "none"
    version: str = ""


class SiteLink(BaseModel):
    """Contents of a site's link.json: the directory the site is bound to."""

    link: Path
