"""
Customers Module
================
Customer provider: resolves a customer id to a profile.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from errors import CustomerNotFound, StorageError


logger = logging.getLogger(__name__)


# ============================================================================
# CONTACT FIELDS
# ============================================================================

EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9]"
    r"(?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
PHONE_REGEX = re.compile(r"^(\+1[-.]?)?(\(?\d{3}\)?[-.]?)?\d{3}[-.]?\d{4}$")
STUDENT_ID_REGEX = re.compile(r"^STU\d{8}$")


def is_valid_email(email: Any) -> bool:
    """Validate an email address."""
    if not email or not isinstance(email, str):
        return False

    email = email.strip()
    if len(email) == 0 or len(email) > 254:
        return False

    return EMAIL_REGEX.match(email) is not None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_phone(phone: Any) -> bool:
    """Validate a US phone number (optional +1)."""
    if not phone or not isinstance(phone, str):
        return False
    return PHONE_REGEX.match(phone.strip()) is not None


def is_valid_student_id(student_id: Any) -> bool:
    """Validate a student id: STU followed by 8 digits."""
    if not student_id or not isinstance(student_id, str):
        return False
    return STUDENT_ID_REGEX.match(student_id.strip()) is not None


@dataclass(frozen=True)
class CustomerProfile:
    """Live customer record (as read at one instant)."""
    customer_id: str
    display_name: str
    email: str
    preferred_name: Optional[str] = None
    phone: Optional[str] = None
    student_id: Optional[str] = None

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "CustomerProfile":
        """
        Build from a stored customer document.

        display_name falls back to "fname lname" when not stored. Email is
        normalized; phone and student id are optional but must be well formed.

        Raises:
            KeyError, ValueError: If the document is malformed
        """
        display_name = doc.get("display_name")
        if not display_name:
            display_name = f"{doc.get('fname', '')} {doc.get('lname', '')}".strip()

        if not display_name:
            raise ValueError("Customer document has no name")

        email = doc["email"]
        if not is_valid_email(email):
            raise ValueError(f"Invalid email: {email!r}")

        phone = doc.get("phone")
        if phone and not is_valid_phone(phone):
            raise ValueError(f"Invalid phone: {phone!r}")

        student_id = doc.get("student_id")
        if student_id and not is_valid_student_id(student_id):
            raise ValueError(f"Invalid student id: {student_id!r}")

        return cls(
            customer_id=str(doc.get("customer_id") or doc["id"]),
            display_name=display_name,
            email=normalize_email(email),
            preferred_name=doc.get("preferred_name"),
            phone=phone.strip() if phone else None,
            student_id=student_id.strip() if student_id else None
        )


class CustomerRepository:
    """Customer provider backed by the `customers` table."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from db import get_db
            self._client = get_db()
        return self._client

    async def get_customer(self, customer_id: str) -> CustomerProfile:
        """
        Resolve customer.

        Raises:
            CustomerNotFound: If no such customer
            StorageError: If the store failed or the document is malformed
        """
        doc = await self.client.fetch_customer(customer_id)

        if not doc:
            logger.warning(f"Customer not found: {customer_id}")
            raise CustomerNotFound(customer_id)

        if doc.get("is_active") is False:
            logger.warning(f"Customer inactive: {customer_id}")
            raise CustomerNotFound(customer_id)

        try:
            return CustomerProfile.from_dict({"customer_id": customer_id, **doc})
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed customer document {customer_id}: {e}")
            raise StorageError(
                f"Customer document {customer_id} is malformed",
                identifier=customer_id
            ) from e
