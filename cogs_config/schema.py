"""
Costing configuration schema.

Defines the settings that govern allocation, voids and daily reporting,
with defaults that match a single-warehouse Thai e-commerce operation.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cogs_kernel.domain.costing import CostingMethod
from cogs_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class CostingConfig:
    """
    Configuration for the costing services.

    Override at instantiation or through YAML:

        config = CostingConfig(default_method=CostingMethod.AVG)
        config = get_active_config(Path("costing.yaml"))
    """

    # Allocation
    default_method: CostingMethod = CostingMethod.FIFO
    max_depletion_retries: int = 3
    require_registered_skus: bool = True

    # Reporting
    business_timezone: str = "Asia/Bangkok"
    daily_cogs_places: int = 2

    # Admin corrections
    min_void_reason_length: int = 10

    def __post_init__(self):
        if not isinstance(self.default_method, CostingMethod):
            try:
                object.__setattr__(
                    self, "default_method", CostingMethod(str(self.default_method).upper())
                )
            except ValueError:
                raise ValueError(
                    f"default_method must be one of "
                    f"{[m.value for m in CostingMethod]}, got '{self.default_method}'"
                ) from None

        if self.max_depletion_retries < 1:
            raise ValueError("max_depletion_retries must be at least 1")
        if self.daily_cogs_places < 0:
            raise ValueError("daily_cogs_places cannot be negative")
        if self.min_void_reason_length < 0:
            raise ValueError("min_void_reason_length cannot be negative")

        try:
            ZoneInfo(self.business_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"business_timezone is not a known IANA zone: '{self.business_timezone}'"
            ) from None

        logger.debug(
            "costing_config_initialized",
            extra={
                "default_method": self.default_method.value,
                "business_timezone": self.business_timezone,
                "require_registered_skus": self.require_registered_skus,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build from a parsed mapping; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown costing config keys: {unknown}")
        logger.info(
            "costing_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["default_method"] = self.default_method.value
        return data
