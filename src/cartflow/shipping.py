"""Postal-code shipping rates."""

import re
from decimal import Decimal
from pathlib import Path
from typing import Any

from . import config
from .errors import NotFoundError, ValidationError
from .logs import get_logger
from .models import ShippingCheck, ShippingRate, UnserviceableRequest, _utc_now, to_money
from .storage import KeyedLocks, read_json, write_json_atomic

RATES_FILE = "shipping_rates.json"
UNSERVICEABLE_FILE = "unserviceable_requests.json"
_RATES_KEY = "rates"

ZERO = Decimal("0")

log = get_logger("shipping")


class ShippingRateResolver:
    """Maps postal codes to shipping charges and manages the rate table."""

    def __init__(self, config_dir: Path | None = None, postal_code_pattern: str | None = None):
        """
        Initialize ShippingRateResolver.

        Args:
            config_dir: Override data directory (for testing).
            postal_code_pattern: Regex a configurable postal code must match.
        """
        self.config_dir = config_dir or config.data_dir()
        self.rates_path = self.config_dir / RATES_FILE
        self.requests_path = self.config_dir / UNSERVICEABLE_FILE
        self._pattern = re.compile(postal_code_pattern or config.postal_code_pattern())
        self._locks = KeyedLocks(self.config_dir, "shipping")
        self._cache: dict[str, ShippingRate] = {}
        self._cache_stamp: tuple[int, int] | None = None

    # --- Lookup ---

    def _rates(self) -> dict[str, ShippingRate]:
        """Rate table, reloaded only when the file changed on disk."""
        try:
            stat = self.rates_path.stat()
        except FileNotFoundError:
            self._cache, self._cache_stamp = {}, None
            return self._cache

        # Atomic replace gives every write a new inode
        stamp = (stat.st_ino, stat.st_mtime_ns)
        if stamp != self._cache_stamp:
            data = read_json(self.rates_path, default={"rates": []})
            self._cache = {
                r["postal_code"]: ShippingRate.from_dict(r) for r in data.get("rates", [])
            }
            self._cache_stamp = stamp
        return self._cache

    def resolve(self, postal_code: str | None) -> Decimal:
        """Shipping charge for a postal code; 0 when no active rate is configured."""
        if not postal_code:
            return ZERO
        rate = self._rates().get(postal_code.strip())
        if rate is None or not rate.active:
            return ZERO
        return rate.charge

    def get_rate(self, postal_code: str) -> ShippingRate:
        """
        Raises:
            NotFoundError: If no rate is configured for the code.
        """
        rate = self._rates().get(postal_code.strip())
        if rate is None:
            raise NotFoundError(f"No shipping rate configured for {postal_code}")
        return rate

    def list_rates(self, include_inactive: bool = True) -> list[ShippingRate]:
        rates = sorted(self._rates().values(), key=lambda r: r.postal_code)
        if include_inactive:
            return rates
        return [r for r in rates if r.active]

    # --- Administration ---

    def _validate_code(self, postal_code: str) -> str:
        code = (postal_code or "").strip()
        if not self._pattern.match(code):
            raise ValidationError(
                f"Postal code {postal_code!r} does not match {self._pattern.pattern}",
                field="postal_code",
            )
        return code

    def _load_raw(self) -> list[dict[str, Any]]:
        return read_json(self.rates_path, default={"rates": []}).get("rates", [])

    def set_rate(
        self,
        postal_code: str,
        charge: Any,
        active: bool = True,
        description: str | None = None,
    ) -> ShippingRate:
        """
        Create or update the rate for a postal code.

        Configuring a code resolves any pending unserviceable requests for it.

        Raises:
            ValidationError: If the code is malformed or the charge negative.
        """
        code = self._validate_code(postal_code)
        amount = to_money(charge, "charge")
        if amount < 0:
            raise ValidationError("Shipping charge cannot be negative", field="charge")

        with self._locks.hold(_RATES_KEY):
            rates = self._load_raw()
            now = _utc_now()
            for raw in rates:
                if raw["postal_code"] == code:
                    raw.update(
                        charge=str(amount),
                        active=active,
                        description=description,
                        updated_at=now,
                    )
                    rate = ShippingRate.from_dict(raw)
                    break
            else:
                rate = ShippingRate(
                    postal_code=code, charge=amount, active=active, description=description
                )
                rates.append(rate.to_dict())
            write_json_atomic(self.rates_path, {"rates": rates})

            if active:
                self._resolve_requests(code)

        log.info("shipping_rate_set", postal_code=code, charge=str(amount), active=active)
        return rate

    def remove_rate(self, postal_code: str) -> ShippingRate:
        """
        Raises:
            NotFoundError: If no rate is configured for the code.
        """
        code = postal_code.strip()
        with self._locks.hold(_RATES_KEY):
            rates = self._load_raw()
            for i, raw in enumerate(rates):
                if raw["postal_code"] == code:
                    removed = ShippingRate.from_dict(rates.pop(i))
                    write_json_atomic(self.rates_path, {"rates": rates})
                    log.info("shipping_rate_removed", postal_code=code)
                    return removed

        raise NotFoundError(f"No shipping rate configured for {postal_code}")

    # --- Serviceability ---

    def _load_requests(self) -> list[dict[str, Any]]:
        return read_json(self.requests_path, default={"requests": []}).get("requests", [])

    def _resolve_requests(self, code: str) -> None:
        """Mark pending requests for a code resolved. Caller holds the rates lock."""
        requests = self._load_requests()
        changed = False
        for raw in requests:
            if raw["postal_code"] == code and raw.get("status") == "pending":
                raw["status"] = "resolved"
                raw["resolved_at"] = _utc_now()
                changed = True
        if changed:
            write_json_atomic(self.requests_path, {"requests": requests})

    def check(
        self,
        postal_code: str,
        requested_by: str | None = None,
        email: str | None = None,
    ) -> ShippingCheck:
        """
        Check whether a postal code can be shipped to.

        An unserviceable code records a pending request so staff can add a
        rate for it; repeated checks of the same code share one request.

        Raises:
            ValidationError: If the code is malformed.
        """
        code = self._validate_code(postal_code)
        rate = self._rates().get(code)
        if rate is not None and rate.active:
            return ShippingCheck(postal_code=code, serviceable=True, charge=rate.charge)

        with self._locks.hold(_RATES_KEY):
            requests = self._load_requests()
            for raw in requests:
                if raw["postal_code"] == code and raw.get("status") == "pending":
                    raw["requested_by"] = requested_by or raw.get("requested_by")
                    raw["email"] = email or raw.get("email")
                    break
            else:
                requests.append(
                    UnserviceableRequest(
                        postal_code=code, requested_by=requested_by, email=email
                    ).to_dict()
                )
            write_json_atomic(self.requests_path, {"requests": requests})

        log.info("postal_code_unserviceable", postal_code=code)
        return ShippingCheck(postal_code=code, serviceable=False, charge=ZERO)

    def pending_requests(self) -> list[UnserviceableRequest]:
        requests = [UnserviceableRequest.from_dict(r) for r in self._load_requests()]
        pending = [r for r in requests if r.status == "pending"]
        pending.sort(key=lambda r: r.created_at, reverse=True)
        return pending
