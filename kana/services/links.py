"""Resolve which site a command targets.

A site is addressed either implicitly, by the directory the command runs in,
or explicitly by name. Each site directory holds a link.json recording the
working directory it is bound to, so a named site keeps mounting the same
plugin or theme checkout it was first started from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from kana.config import ConfigurationError, Settings
from kana.schemas.site import SiteIdentity, SiteLink
from kana.utils.path_utils import ensure_directory
from kana.validators import sanitize_site_name


logger = logging.getLogger(__name__)


LINK_FILE = "link.json"


@dataclass
class ResolvedSite:
    identity: SiteIdentity
    working_directory: Path
    named: bool


def read_link(site_directory: Path) -> Path | None:
    link_file = site_directory / LINK_FILE
    if not link_file.is_file():
        return None
    try:
        return SiteLink.model_validate_json(link_file.read_text(encoding="utf-8")).link
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid link file {link_file}: {e}") from e


def write_link(site_directory: Path, target: Path) -> Path:
    ensure_directory(site_directory)
    link_file = site_directory / LINK_FILE
    link_file.write_text(SiteLink(link=target).model_dump_json(), encoding="utf-8")
    return link_file


def resolve_site(settings: Settings, working_directory: Path, name: str | None = None) -> ResolvedSite:
    """Compute the site identity and its effective working directory.

    Without a name the site is named after the working directory and linked
    to it; with a name the site is linked to its own site directory unless a
    link file already says otherwise.
    """
    site_name = sanitize_site_name(name if name else working_directory.name)
    identity = SiteIdentity.derive(site_name, settings.sites_directory, settings.app_domain)

    link = read_link(identity.directory)
    if link is None:
        link = identity.directory if name else working_directory
        write_link(identity.directory, link)
        logger.debug("Linked site %s to %s", site_name, link)

    return ResolvedSite(identity=identity, working_directory=link, named=bool(name))
