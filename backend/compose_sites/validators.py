"""Input validation and sanitization for compose sites.

Provides validators for repository URLs, branches and the path-like form
fields to prevent command injection and path traversal on the managed host.
"""

from __future__ import annotations

import re
import shlex
from urllib.parse import urlparse


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


RELATIVE_PATH_PATTERN = re.compile(r"^[a-zA-Z0-9._\-/]+$")
URL_PATH_PATTERN = re.compile(r"^/?[a-zA-Z0-9._\-/]*$")

MAX_FIELD_LENGTH = 255


def validate_domain(domain: str) -> str:
    """Validate a domain name.

    The domain names the vhost file on the server and is written into the
    vhost itself, so it must be a bare hostname:
    - No path, query, or whitespace
    - No protocol prefix (will be stripped if present)

    Returns the lowercased domain.
    Raises ValidationError if invalid.
    """
    if not domain or not domain.strip():
        raise ValidationError("Domain cannot be empty")

    domain = domain.strip().lower()

    # Strip protocol if present
    if domain.startswith("http://"):
        domain = domain[7:]
    elif domain.startswith("https://"):
        domain = domain[8:]

    if len(domain) > MAX_FIELD_LENGTH:
        raise ValidationError("Domain must be 255 characters or less")

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


def validate_branch(branch: str) -> str:
    """Validate a git branch name.

    Branch names:
    - Cannot contain shell metacharacters
    - Cannot start with - (flag injection)
    - Limited to safe characters

    Returns the validated branch.
    Raises ValidationError if invalid.
    """
    if not branch:
        raise ValidationError("Branch name cannot be empty")

    branch = branch.strip()

    if len(branch) > MAX_FIELD_LENGTH:
        raise ValidationError("Branch name too long")

    if branch.startswith("-"):
        raise ValidationError("Branch name cannot start with hyphen")

    if not re.match(r'^[a-zA-Z0-9][a-zA-Z0-9._/-]*$', branch):
        raise ValidationError(
            "Branch name can only contain alphanumeric characters, "
            "hyphens, underscores, dots, and slashes"
        )

    if ".." in branch:
        raise ValidationError("Branch name cannot contain '..'")

    return branch


def validate_repo_url(url: str) -> str:
    """Validate a git repository URL.

    Accepts http(s), ssh:// and scp-like git@host:path URLs. The URL is
    passed to git clone on the server, so it must not look like an option.

    Returns the stripped URL.
    Raises ValidationError if invalid.
    """
    if not url or not url.strip():
        raise ValidationError("Repository URL is required when Compose Source is set to repo")

    url = url.strip()

    if len(url) > MAX_FIELD_LENGTH:
        raise ValidationError("Repository URL must be 255 characters or less")

    if url.startswith("-"):
        raise ValidationError("Repository URL cannot start with hyphen")

    if re.match(r"^[\w.-]+@[\w.-]+:[^\s]+$", url):
        return url

    parsed = urlparse(url)
    if parsed.scheme not in ("https", "http", "ssh", "git"):
        raise ValidationError("Repository URL must use https, http, ssh or git@host:path form")

    if not parsed.netloc:
        raise ValidationError("Repository URL must include a host")

    return url


def validate_relative_path(value: str, field: str) -> str:
    """Validate project_dir / compose_file style values."""
    if len(value) > MAX_FIELD_LENGTH:
        raise ValidationError(f"{field} must be 255 characters or less")

    if not RELATIVE_PATH_PATTERN.match(value):
        raise ValidationError(
            f"{field} can only contain letters, digits, dots, underscores, hyphens and slashes"
        )

    if ".." in value:
        raise ValidationError(f"{field} cannot contain '..'")

    return value


def validate_url_path(value: str, field: str) -> str:
    """Validate public_url_path / healthcheck_url style values."""
    if len(value) > MAX_FIELD_LENGTH:
        raise ValidationError(f"{field} must be 255 characters or less")

    if not URL_PATH_PATTERN.match(value):
        raise ValidationError(
            f"{field} must be a path made of letters, digits, dots, underscores, hyphens and slashes"
        )

    if ".." in value:
        raise ValidationError(f"{field} cannot contain '..'")

    return value


def validate_port(port: int, field: str, low: int = 1, high: int = 65535) -> int:
    if not low <= port <= high:
        raise ValidationError(f"{field} must be between {low} and {high}")
    return port


def quote_shell_arg(arg: str) -> str:
    """Safely quote a string for use in shell commands.

    Uses shlex.quote to prevent shell injection.
    """
    return shlex.quote(arg)


def quote_shell_arg_always(arg: str) -> str:
    """Single-quote unconditionally, even for strings shlex would leave bare.

    Used for generated scripts, which must read the same regardless of
    whether a value happens to contain shell-special characters.
    """
    return "'" + arg.replace("'", "'\\''") + "'"
