"""Linked-rate validation and resolution.

A linked rate is priced relative to a master rate plan, either by a fixed
offset or by a percentage. The partner may or may not accept linked rates;
when it does not (or an external system already does the math), linked
entries are dropped or materialized into plain rates here.

The resolver is stateless: it works on a caller-owned batch and never
mutates the entries it receives.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from hotelsync.core.types import RateOperation
from hotelsync.engine.errors import RateValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")

TIE_BREAK_FIRST = "first"
TIE_BREAK_WIDEST_OVERLAP = "widest_overlap"


def to_money(value: Any) -> Decimal:
    """Convert a number or numeric string to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _optional_money(value: Any) -> Decimal | None:
    return None if value is None else to_money(value)


def quantize(amount: Decimal) -> Decimal:
    """Round an amount to cents, half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RateEntry:
    """One price row for a room type and rate plan over a date range.

    Attributes:
        room_type_code: Partner room type code.
        rate_plan_code: Partner rate plan code.
        start: First night of the range (inclusive).
        end: Last night of the range (inclusive).
        first_adult_rate: Price for one adult.
        second_adult_rate: Price for two adults.
        additional_adult_rate: Price per extra adult, when defined.
        additional_child_rate: Price per extra child, when defined.
        currency_code: ISO 4217 currency code.
        is_linked: Whether the price derives from a master rate plan.
        master_rate_plan_code: Master rate plan (required when linked).
        linked_offset: Fixed amount added to the master price.
        linked_percentage: Percentage applied to the master price.
    """

    room_type_code: str
    rate_plan_code: str
    start: date
    end: date
    first_adult_rate: Decimal
    second_adult_rate: Decimal
    additional_adult_rate: Decimal | None = None
    additional_child_rate: Decimal | None = None
    currency_code: str = "USD"
    is_linked: bool = False
    master_rate_plan_code: str | None = None
    linked_offset: Decimal | None = None
    linked_percentage: Decimal | None = None
    restricted_display: bool = False
    is_commissionable: bool = True
    rate_plan_qualifier: bool = False
    market_code: str | None = None
    max_guest_applicable: int | None = None

    def __post_init__(self) -> None:
        # Accept ints, floats and strings for prices; store Decimal
        object.__setattr__(self, "first_adult_rate", to_money(self.first_adult_rate))
        object.__setattr__(self, "second_adult_rate", to_money(self.second_adult_rate))
        object.__setattr__(self, "additional_adult_rate", _optional_money(self.additional_adult_rate))
        object.__setattr__(self, "additional_child_rate", _optional_money(self.additional_child_rate))
        object.__setattr__(self, "linked_offset", _optional_money(self.linked_offset))
        object.__setattr__(self, "linked_percentage", _optional_money(self.linked_percentage))

        if self.end < self.start:
            raise RateValidationError(
                f"Rate '{self.rate_plan_code}' ends ({self.end}) before it starts ({self.start})",
                rate_plan_code=self.rate_plan_code,
            )
        if self.is_linked:
            if not self.master_rate_plan_code:
                raise RateValidationError(
                    f"Linked rate '{self.rate_plan_code}' has no master rate plan code",
                    rate_plan_code=self.rate_plan_code,
                )
            if (self.linked_offset is None) == (self.linked_percentage is None):
                raise RateValidationError(
                    f"Linked rate '{self.rate_plan_code}' must define exactly one of offset or percentage",
                    rate_plan_code=self.rate_plan_code,
                )
        elif self.linked_offset is not None or self.linked_percentage is not None:
            raise RateValidationError(
                f"Rate '{self.rate_plan_code}' has linkage values but is not linked",
                rate_plan_code=self.rate_plan_code,
            )

    @property
    def is_master(self) -> bool:
        return not self.is_linked

    @property
    def calculation_type(self) -> str | None:
        """'offset' or 'percentage' for linked entries, None otherwise."""
        if not self.is_linked:
            return None
        return "offset" if self.linked_offset is not None else "percentage"

    def overlaps(self, other: RateEntry) -> bool:
        return self.start <= other.end and self.end >= other.start

    def overlap_nights(self, other: RateEntry) -> int:
        """Number of nights shared with other (0 when disjoint)."""
        if not self.overlaps(other):
            return 0
        return (min(self.end, other.end) - max(self.start, other.start)).days + 1


@dataclass(frozen=True)
class RatePolicy:
    """Decides how linked rates are handled for one rate operation.

    Attributes:
        operation: Rate operation being sent.
        external_handles_linked: An external system already materializes
            linked rates, so they must not be sent.
        partner_supports_linked: The partner accepts linked rates.
    """

    operation: RateOperation
    external_handles_linked: bool = False
    partner_supports_linked: bool = True

    @property
    def allow_linked(self) -> bool:
        if not self.operation.supports_linked_rates:
            return False
        if self.external_handles_linked:
            return False
        return self.partner_supports_linked

    @property
    def is_creation(self) -> bool:
        return self.operation.is_creation

    @property
    def strategy(self) -> str:
        """Short description of what happens to linked entries."""
        if not self.operation.supports_linked_rates:
            return "ignore"
        if self.external_handles_linked:
            return "filter_out"
        return "resolve" if self.partner_supports_linked else "filter_out"


class RateResolver:
    """Validate linked-rate dependencies and materialize linked prices."""

    def __init__(self, tie_break: str = TIE_BREAK_FIRST) -> None:
        """Initialize the resolver.

        Args:
            tie_break: How to pick among several overlapping masters,
                "first" (batch order) or "widest_overlap".
        """
        if tie_break not in (TIE_BREAK_FIRST, TIE_BREAK_WIDEST_OVERLAP):
            raise ValueError(f"Unknown tie-break: {tie_break}")
        self._tie_break = tie_break

    def resolve(
        self,
        batch: Sequence[RateEntry],
        allow_linked: bool,
        is_creation: bool = False,
    ) -> list[RateEntry]:
        """Resolve a rate batch into plain entries.

        Args:
            batch: Rate entries (masters and linked).
            allow_linked: Whether linked entries are kept and materialized.
            is_creation: Whether the batch creates rate plans at the partner.

        Returns:
            Masters unchanged followed by materialized linked entries.

        Raises:
            RateValidationError: If any entry fails validation. The whole
                batch is rejected.
        """
        self._reject_self_references(batch)

        masters = [entry for entry in batch if entry.is_master]
        linked = [entry for entry in batch if entry.is_linked]

        if not allow_linked:
            if linked:
                logger.info("Dropping %d linked rate(s): linked rates not allowed", len(linked))
            return masters
        if not linked:
            return masters

        self.validate_dependencies(batch, is_creation)

        materialized = [self._materialize(entry, self._find_master(entry, masters)) for entry in linked]
        logger.debug("Resolved %d linked rate(s) against %d master(s)", len(materialized), len(masters))
        return masters + materialized

    def validate_dependencies(self, batch: Sequence[RateEntry], is_creation: bool) -> None:
        """Check that linked entries can be resolved.

        Args:
            batch: Rate entries.
            is_creation: When True, every referenced master must be present
                in the batch. Otherwise absent masters are assumed to exist
                at the partner.

        Raises:
            RateValidationError: On self reference, a missing master during
                creation, or a referenced master without valid adult rates.
        """
        self._reject_self_references(batch)

        master_codes = {entry.rate_plan_code for entry in batch if entry.is_master}
        required = self.required_masters(batch)

        missing = [code for code in required if code not in master_codes]
        if missing and is_creation:
            offender = next(
                entry.rate_plan_code
                for entry in batch
                if entry.is_linked and entry.master_rate_plan_code in missing
            )
            raise RateValidationError(
                f"Missing master rates for creation: {', '.join(missing)}. "
                f"Master rates must be created before linked rate '{offender}'",
                rate_plan_code=offender,
            )

        for entry in batch:
            if entry.is_master and entry.rate_plan_code in required:
                self.validate_master(entry)

    @staticmethod
    def validate_master(entry: RateEntry) -> None:
        """Ensure an entry can serve as a master rate.

        Raises:
            RateValidationError: If the entry is linked or lacks positive
                first and second adult rates.
        """
        if entry.is_linked:
            raise RateValidationError(
                f"Linked rate '{entry.rate_plan_code}' cannot be used as a master rate",
                rate_plan_code=entry.rate_plan_code,
            )
        if entry.first_adult_rate <= ZERO or entry.second_adult_rate <= ZERO:
            raise RateValidationError(
                f"Master rate '{entry.rate_plan_code}' must have positive first and second adult rates",
                rate_plan_code=entry.rate_plan_code,
            )

    @staticmethod
    def required_masters(batch: Iterable[RateEntry]) -> list[str]:
        """Distinct master codes referenced by linked entries, in batch order."""
        codes: list[str] = []
        for entry in batch:
            if entry.is_linked and entry.master_rate_plan_code and entry.master_rate_plan_code not in codes:
                codes.append(entry.master_rate_plan_code)
        return codes

    @staticmethod
    def summarize(batch: Sequence[RateEntry]) -> dict[str, Any]:
        """Describe the linked-rate structure of a batch for diagnostics."""
        master_codes: list[str] = []
        for entry in batch:
            if entry.is_master and entry.rate_plan_code not in master_codes:
                master_codes.append(entry.rate_plan_code)

        details = []
        issues = []
        for entry in batch:
            if not entry.is_linked:
                continue
            details.append(
                {
                    "rate_plan_code": entry.rate_plan_code,
                    "master_rate_plan_code": entry.master_rate_plan_code,
                    "calculation_type": entry.calculation_type,
                    "calculation_value": str(
                        entry.linked_offset if entry.linked_offset is not None else entry.linked_percentage
                    ),
                    "room_type": entry.room_type_code,
                }
            )
            if entry.master_rate_plan_code == entry.rate_plan_code:
                issues.append(f"Linked rate '{entry.rate_plan_code}' references itself as master")
            elif entry.master_rate_plan_code not in master_codes:
                issues.append(
                    f"Master rate '{entry.master_rate_plan_code}' not found in batch "
                    f"for linked rate '{entry.rate_plan_code}'"
                )

        return {
            "total_rates": len(batch),
            "master_rates": sum(1 for entry in batch if entry.is_master),
            "linked_rates": len(details),
            "master_rate_codes": master_codes,
            "linked_rate_details": details,
            "potential_issues": issues,
        }

    @staticmethod
    def _reject_self_references(batch: Iterable[RateEntry]) -> None:
        for entry in batch:
            if entry.is_linked and entry.master_rate_plan_code == entry.rate_plan_code:
                raise RateValidationError(
                    f"Linked rate '{entry.rate_plan_code}' cannot reference itself as master",
                    rate_plan_code=entry.rate_plan_code,
                )

    def _find_master(self, linked: RateEntry, masters: Sequence[RateEntry]) -> RateEntry:
        candidates = [
            master
            for master in masters
            if master.rate_plan_code == linked.master_rate_plan_code
            and master.room_type_code == linked.room_type_code
            and master.overlaps(linked)
        ]
        if not candidates:
            raise RateValidationError(
                f"No matching master rate '{linked.master_rate_plan_code}' found for linked rate "
                f"'{linked.rate_plan_code}' in room type '{linked.room_type_code}' "
                f"for date range {linked.start.isoformat()} to {linked.end.isoformat()}",
                rate_plan_code=linked.rate_plan_code,
            )
        if len(candidates) == 1:
            return candidates[0]

        if self._tie_break == TIE_BREAK_WIDEST_OVERLAP:
            # max() keeps the first of equal candidates, so ties fall back to batch order
            chosen = max(candidates, key=lambda master: master.overlap_nights(linked))
        else:
            chosen = candidates[0]
        logger.warning(
            "Linked rate %s (room %s, %s..%s) overlaps %d master ranges of %s; using %s..%s",
            linked.rate_plan_code,
            linked.room_type_code,
            linked.start,
            linked.end,
            len(candidates),
            linked.master_rate_plan_code,
            chosen.start,
            chosen.end,
        )
        return chosen

    @staticmethod
    def _materialize(linked: RateEntry, master: RateEntry) -> RateEntry:
        if linked.linked_offset is not None:
            offset = linked.linked_offset

            def adult(amount: Decimal) -> Decimal:
                return max(CENT, quantize(amount + offset))

            def additional(amount: Decimal | None) -> Decimal | None:
                return None if amount is None else max(ZERO, quantize(amount + offset))

        else:
            multiplier = 1 + linked.linked_percentage / 100  # type: ignore[operator]

            def adult(amount: Decimal) -> Decimal:
                return max(CENT, quantize(amount * multiplier))

            def additional(amount: Decimal | None) -> Decimal | None:
                return None if amount is None else max(ZERO, quantize(amount * multiplier))

        return replace(
            linked,
            first_adult_rate=adult(master.first_adult_rate),
            second_adult_rate=adult(master.second_adult_rate),
            additional_adult_rate=additional(master.additional_adult_rate),
            additional_child_rate=additional(master.additional_child_rate),
            is_linked=False,
            master_rate_plan_code=None,
            linked_offset=None,
            linked_percentage=None,
        )
