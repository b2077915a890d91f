"""
Incentive Engine Configuration Schema.

Defines the structure and defaults for runtime settings.  Actual values are
loaded from YAML by ``incentive_config.loader``.
"""

from dataclasses import dataclass, field

VALID_PERIOD_TYPES = {"monthly", "quarterly", "annual"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class IncentiveSettings:
    """Runtime settings for the accrual, claim and payout services."""
    database_url: str = "sqlite:///incentives.db"
    echo_sql: bool = False
    money_decimal_places: int = 2
    claim_number_prefix: str = "CLM"
    claim_sequence_width: int = 5
    default_period_type: str = "monthly"
    # Claims flip to ``paid`` when their payout is scheduled, not when it completes.
    mark_claim_paid_on_schedule: bool = True
    counted_order_statuses: tuple[str, ...] = field(
        default_factory=lambda: ("delivered", "shipped")
    )
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.database_url or not self.database_url.strip():
            raise ValueError("database_url cannot be empty")
        if not 0 <= self.money_decimal_places <= 9:
            raise ValueError("money_decimal_places must be between 0 and 9")
        if not self.claim_number_prefix or not self.claim_number_prefix.strip():
            raise ValueError("claim_number_prefix cannot be empty")
        if self.claim_sequence_width < 1:
            raise ValueError("claim_sequence_width must be positive")
        if self.default_period_type not in VALID_PERIOD_TYPES:
            raise ValueError(
                f"default_period_type must be one of {sorted(VALID_PERIOD_TYPES)}"
            )
        if not self.counted_order_statuses:
            raise ValueError("counted_order_statuses cannot be empty")
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(VALID_LOG_LEVELS)}")
