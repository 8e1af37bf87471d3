"""Tenant identifier validation."""

import re

# Tenant IDs become directory names, container names and DNS labels
_TENANT_ID_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(email: str) -> None:
    """
    Validate an email address loosely.
    
    Raises:
        ValueError: If the address is malformed
    """
    if not email or len(email) > 254 or not _EMAIL_RE.match(email):
        raise ValueError(f"Invalid email address: {email!r}")


def validate_tenant_id(tenant_id: str) -> None:
    """
    Validate tenant_id format.
    
    A tenant ID must be a lowercase DNS label: letters, digits and hyphens,
    at most 63 characters, not starting or ending with a hyphen.
    
    Args:
        tenant_id: Tenant ID to validate
    
    Raises:
        ValueError: If validation fails
    """
    if not tenant_id:
        raise ValueError("tenant_id cannot be empty")
    
    if not _TENANT_ID_RE.match(tenant_id):
        raise ValueError(f"Invalid tenant_id format (must be a DNS label): {tenant_id!r}")


def tenant_id_from_email(email: str) -> str:
    """
    Derive a stable tenant ID from an email address.
    
    ``Jane.Doe@Example.com`` becomes ``jane-doe-example-com``.
    
    Raises:
        ValueError: If the email is invalid or yields an empty ID
    """
    validate_email(email)
    
    slug = email.lower()
    for separator in ("@", ".", "/", "_", "+"):
        slug = slug.replace(separator, "-")
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    slug = slug[:63].rstrip("-")
    
    validate_tenant_id(slug)
    return slug
