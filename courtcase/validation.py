"""
Form validation for case and account input.

Runs before anything is written. Failures raise errors.ValidationError with a
per-field message map (client fields use dotted keys, e.g. "client.email").
"""

import re
from typing import Any, Dict, Optional

from .errors import ValidationError

EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")
PHONE_PATTERN = re.compile(r"^\+?[\d\s()-]{10,15}$")

MIN_PASSWORD_LENGTH = 6


def derive_client_name(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Fill client_name from the client's first/last name when it was left blank."""
    client = fields.get("client") or {}
    if (fields.get("client_name") or "").strip():
        return fields
    first = (client.get("first_name") or "").strip()
    last = (client.get("last_name") or "").strip()
    if first and last:
        fields = dict(fields)
        fields["client_name"] = f"{first} {last}"
    return fields


def validate_client(client: Optional[Dict[str, Any]]) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not client:
        return errors

    email = client.get("email")
    if email and not EMAIL_PATTERN.search(email):
        errors["client.email"] = "Invalid email address"

    phone = client.get("phone")
    if phone and not PHONE_PATTERN.match(phone):
        errors["client.phone"] = "Invalid phone number"

    return errors


def validate_new_case(fields: Dict[str, Any]) -> None:
    """Required-field and format checks for a case about to be created."""
    errors: Dict[str, str] = {}

    if not (fields.get("client_name") or "").strip():
        errors["client_name"] = "Client name is required"

    if not (fields.get("current_summary") or "").strip():
        errors["current_summary"] = "Case summary is required"

    errors.update(validate_client(fields.get("client")))

    if errors:
        raise ValidationError("Please correct the highlighted fields", fields=errors)


def validate_case_changes(fields: Dict[str, Any]) -> None:
    """Format checks for a partial update (nothing is required)."""
    errors = validate_client(fields.get("client"))
    if errors:
        raise ValidationError("Please correct the highlighted fields", fields=errors)


def validate_sign_in(email: Optional[str], password: Optional[str]) -> None:
    if not email or not password:
        raise ValidationError("Please enter both email and password")


def validate_sign_up(email: Optional[str], password: Optional[str],
                     confirm_password: Optional[str] = None) -> None:
    if not email or not password:
        raise ValidationError("Please fill in all required fields")

    if confirm_password is not None and password != confirm_password:
        raise ValidationError("Passwords do not match", fields={"confirm_password": "Passwords do not match"})

    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            fields={"password": "Password is too short"},
        )
