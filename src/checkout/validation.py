"""
Checkout input checks. All of them run before anything is persisted.
"""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from db.models import ShippingAddress
from utils import config
from utils.errors import ValidationError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_DIGITS = re.compile(r"\D")


def _digits(value: Any) -> str:
    return _NON_DIGITS.sub("", str(value or ""))


def validate_email(email: Optional[str]) -> bool:
    return bool(email) and _EMAIL_RE.match(email) is not None


def validate_phone(phone: Optional[str]) -> bool:
    """Exactly 10 digits once separators are stripped."""
    return len(_digits(phone)) == 10


def validate_pincode(pincode: Optional[str]) -> bool:
    """Exactly 6 digits once separators are stripped."""
    return len(_digits(pincode)) == 6


def validate_required(fields: Mapping[str, Any], required: Iterable[str]) -> None:
    """Raise ValidationError for the first required field that is missing or blank."""
    for name in required:
        value = fields.get(name)
        if value is None or str(value).strip() == "":
            raise ValidationError(name, f"{name} is required")


def resolve_address(
    form: Mapping[str, Any],
    saved_addresses: List[Dict[str, Any]],
    selected_id: Optional[Any] = None,
) -> Dict[str, Any]:
    """
    Fields to validate and ship to. A selected saved address overrides the
    freeform form fields it defines.
    """
    if selected_id is None or selected_id == "":
        return dict(form)
    for saved in saved_addresses:
        if str(saved.get("id")) == str(selected_id):
            return {**form, **saved}
    raise ValidationError("address", "Selected address was not found")


def validate_checkout(
    fields: Mapping[str, Any],
    email: Optional[str],
    required: Optional[Iterable[str]] = None,
) -> ShippingAddress:
    """Run every checkout check in order and return the shipping address."""
    validate_required(
        fields, config.REQUIRED_ADDRESS_FIELDS if required is None else required
    )
    if not validate_email(email):
        raise ValidationError("email", "Please enter a valid email address")
    if not validate_phone(fields.get("phone")):
        raise ValidationError("phone", "Please enter a valid 10-digit phone number")
    if not validate_pincode(fields.get("pincode")):
        raise ValidationError("pincode", "Please enter a valid 6-digit pincode")
    return ShippingAddress.from_dict({**fields, "email": email})
