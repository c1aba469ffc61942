"""Customer records and the POS find-or-create resolver."""

from pathlib import Path
from typing import Any

from . import config
from .errors import CustomerNotFoundError, ValidationError
from .logs import get_logger
from .models import Address, Customer
from .storage import KeyedLocks, read_json, write_json_atomic
from .utils import normalize_email, normalize_phone

CUSTOMERS_FILE = "customers.json"
_CUSTOMERS_KEY = "customers"

log = get_logger("customers")


class CustomerResolver:
    """Exact customer lookup by email/phone, creating records when needed."""

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize CustomerResolver.

        Args:
            config_dir: Override data directory (for testing).
        """
        self.config_dir = config_dir or config.data_dir()
        self.path = self.config_dir / CUSTOMERS_FILE
        self._locks = KeyedLocks(self.config_dir, "customers")

    def _load(self) -> list[dict[str, Any]]:
        return read_json(self.path, default={"customers": []}).get("customers", [])

    def _save(self, customers: list[dict[str, Any]]) -> None:
        write_json_atomic(self.path, {"customers": customers})

    @staticmethod
    def _identity(email: str | None, phone: str | None) -> tuple[str | None, str | None]:
        email, phone = normalize_email(email), normalize_phone(phone)
        if email is None and phone is None:
            raise ValidationError("Customer email or phone number is required", field="email")
        return email, phone

    @staticmethod
    def _match(
        customers: list[dict[str, Any]], email: str | None, phone: str | None
    ) -> dict[str, Any] | None:
        # Email match wins over phone match, even when both point at records
        if email is not None:
            for raw in customers:
                if normalize_email(raw.get("email")) == email:
                    return raw
        if phone is not None:
            for raw in customers:
                if normalize_phone(raw.get("phone")) == phone:
                    return raw
        return None

    def get(self, customer_id: str) -> Customer:
        """
        Raises:
            CustomerNotFoundError: If customer doesn't exist.
        """
        for raw in self._load():
            if raw["id"] == customer_id:
                return Customer.from_dict(raw)
        raise CustomerNotFoundError(customer_id)

    def list_customers(self) -> list[Customer]:
        return [Customer.from_dict(c) for c in self._load()]

    def resolve(self, email: str | None = None, phone: str | None = None) -> Customer | None:
        """
        Find the customer matching an email (case-insensitive) or phone (digits).

        Raises:
            ValidationError: If neither email nor phone is given.
        """
        email, phone = self._identity(email, phone)
        raw = self._match(self._load(), email, phone)
        return Customer.from_dict(raw) if raw else None

    def resolve_or_create(
        self,
        email: str | None = None,
        phone: str | None = None,
        name: str | None = None,
        default_address: Address | None = None,
    ) -> Customer:
        """
        Resolve a customer, creating one if nothing matches.

        Lookup and insert happen under one lock so concurrent POS submits
        for the same person produce a single record.

        Raises:
            ValidationError: If neither email nor phone is given.
        """
        email, phone = self._identity(email, phone)
        with self._locks.hold(_CUSTOMERS_KEY):
            customers = self._load()
            raw = self._match(customers, email, phone)
            if raw is not None:
                return Customer.from_dict(raw)

            customer = Customer.create(
                name=name.strip() if name and name.strip() else None,
                email=email,
                phone=phone,
                default_address=default_address.copy() if default_address else None,
            )
            customers.append(customer.to_dict())
            self._save(customers)

        log.info("customer_created", customer_id=customer.id, has_email=email is not None)
        return customer

    def search(self, query: str, limit: int = 10) -> list[Customer]:
        """Substring search on name, email and phone digits (for autocomplete)."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        digits = normalize_phone(needle)

        results: list[Customer] = []
        for raw in self._load():
            name = (raw.get("name") or "").lower()
            email = (raw.get("email") or "").lower()
            phone = raw.get("phone") or ""
            if needle in name or needle in email or (digits and digits in phone):
                results.append(Customer.from_dict(raw))
                if len(results) >= limit:
                    break
        return results
