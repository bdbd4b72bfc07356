"""Input validation and sanitization for kana.

Provides validators for site names, domains, PHP versions and container names
so that every derived container name, label and path is safe to hand to the
Docker daemon.
"""

from __future__ import annotations

import re
import shlex


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


def sanitize_site_name(name: str) -> str:
    """Turn an arbitrary directory or flag value into a site name.

    - Lowercased
    - Every run of characters outside [a-z0-9] becomes a single hyphen
    - Leading and trailing hyphens are trimmed

    Returns the sanitized name.
    Raises ValidationError if nothing usable remains.
    """
    if not name:
        raise ValidationError("Site name cannot be empty")

    sanitized = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")

    if not sanitized:
        raise ValidationError(f"Site name '{name}' contains no usable characters")

    if len(sanitized) > 63:
        raise ValidationError("Site name must be 63 characters or less")

    return sanitized


def validate_domain(domain: str) -> str:
    """Validate a domain name.

    Domains must be:
    - Valid hostname format
    - No path, query, or fragment components
    - No protocol prefix (will be stripped if present)

    Returns the validated domain.
    Raises ValidationError if invalid.
    """
    if not domain:
        raise ValidationError("Domain cannot be empty")

    domain = domain.strip().lower()

    if domain.startswith("http://"):
        domain = domain[7:]
    elif domain.startswith("https://"):
        domain = domain[8:]

    domain = domain.split("/")[0]

    if not re.match(r'^[a-z0-9]([a-z0-9.-]*[a-z0-9])?$', domain):
        raise ValidationError(f"Invalid domain format: {domain}")

    labels = domain.split(".")
    if len(labels) < 2:
        raise ValidationError("Domain must have at least two labels (e.g., example.com)")

    for label in labels:
        if not label:
            raise ValidationError("Domain labels cannot be empty")
        if len(label) > 63:
            raise ValidationError("Domain labels must be 63 characters or less")
        if label.startswith("-") or label.endswith("-"):
            raise ValidationError("Domain labels cannot start or end with hyphen")

    return domain


def validate_php_version(version: str) -> str:
    """Validate a PHP version as used in the wordpress image tags (e.g. 8.1)."""
    if not version:
        raise ValidationError("PHP version cannot be empty")

    version = version.strip()

    if not re.match(r'^\d+\.\d+$', version):
        raise ValidationError(f"PHP version must look like '8.1', got '{version}'")

    return version


def validate_container_name(name: str) -> str:
    """Validate a Docker container name.

    Container names must match Docker's naming rules:
    - Alphanumeric, hyphens, underscores
    - Cannot start with hyphen

    Returns validated name.
    Raises ValidationError if invalid.
    """
    if not name:
        raise ValidationError("Container name cannot be empty")

    name = name.strip()

    if not re.match(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$', name):
        raise ValidationError(
            "Container name must be alphanumeric with optional "
            "hyphens, underscores, and dots"
        )

    if len(name) > 128:
        raise ValidationError("Container name too long")

    return name


def quote_shell_arg(arg: str) -> str:
    """Safely quote a string for use in shell commands.

    Uses shlex.quote to prevent shell injection.
    """
    return shlex.quote(arg)
