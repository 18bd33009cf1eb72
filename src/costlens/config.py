import os
from dataclasses import dataclass, field

from costlens.errors import InvalidConfiguration
from costlens.keys import resolve_dimension, resolve_key, resolve_value


def _env_float(name: "str", default: "float") -> "float":
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfiguration(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: "str", default: "int | None") -> "int | None":
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfiguration(f"{name} must be an integer, got {raw!r}") from None


def _env_ints(name: "str", default: "tuple[int, ...]") -> "tuple[int, ...]":
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise InvalidConfiguration(
            f"{name} must be a comma-separated list of integers, got {raw!r}"
        ) from None


def _env_floats(name: "str", default: "tuple[float, ...]") -> "tuple[float, ...]":
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return tuple(float(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise InvalidConfiguration(
            f"{name} must be a comma-separated list of numbers, got {raw!r}"
        ) from None


@dataclass
class Config:
    # dimension names, comma-separated for composite keys
    group_by: "str" = "service"
    value_field: "str" = "cost"
    log_level: "str" = "info"

    outlier_threshold: "float" = 2.0
    # None keeps every outlier
    outlier_limit: "int | None" = None

    rolling_windows: "tuple[int, ...]" = (7, 30)

    pair_dimension: "str" = "service"
    context_dimension: "str" = "project"
    min_co_occurrence: "int" = 5

    # inner boundaries; =0 and the open top bucket are implied
    bucket_boundaries: "tuple[float, ...]" = field(
        default_factory=lambda: (1.0, 10.0, 100.0, 1000.0)
    )

    # worker threads for partitioned aggregation, None lets the pool decide
    max_workers: "int | None" = None

    @classmethod
    def from_env(cls) -> "Config":
        defaults = cls()
        return cls(
            group_by=os.environ.get("COSTLENS_GROUP_BY", defaults.group_by),
            value_field=os.environ.get("COSTLENS_VALUE_FIELD", defaults.value_field),
            log_level=os.environ.get("COSTLENS_LOG_LEVEL", defaults.log_level),
            outlier_threshold=_env_float(
                "COSTLENS_OUTLIER_THRESHOLD", defaults.outlier_threshold
            ),
            outlier_limit=_env_int("COSTLENS_OUTLIER_LIMIT", defaults.outlier_limit),
            rolling_windows=_env_ints(
                "COSTLENS_ROLLING_WINDOWS", defaults.rolling_windows
            ),
            pair_dimension=os.environ.get(
                "COSTLENS_PAIR_DIMENSION", defaults.pair_dimension
            ),
            context_dimension=os.environ.get(
                "COSTLENS_CONTEXT_DIMENSION", defaults.context_dimension
            ),
            min_co_occurrence=_env_int(
                "COSTLENS_MIN_CO_OCCURRENCE", defaults.min_co_occurrence
            ),
            bucket_boundaries=_env_floats(
                "COSTLENS_BUCKET_BOUNDARIES", defaults.bucket_boundaries
            ),
            max_workers=_env_int("COSTLENS_MAX_WORKERS", defaults.max_workers),
        )

    def validate(self) -> "None":
        """
        fails fast on values no analysis could run with.
        """
        resolve_key(self.group_by)
        resolve_value(self.value_field)
        resolve_dimension(self.pair_dimension)
        resolve_dimension(self.context_dimension)
        if self.outlier_threshold < 0:
            raise InvalidConfiguration(
                f"outlier_threshold must be >= 0, got {self.outlier_threshold}"
            )
        if self.outlier_limit is not None and self.outlier_limit <= 0:
            raise InvalidConfiguration(
                f"outlier_limit must be positive, got {self.outlier_limit}"
            )
        if not self.rolling_windows or any(w < 1 for w in self.rolling_windows):
            raise InvalidConfiguration(
                f"rolling_windows must be positive, got {self.rolling_windows}"
            )
        if self.min_co_occurrence < 0:
            raise InvalidConfiguration(
                f"min_co_occurrence must be >= 0, got {self.min_co_occurrence}"
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfiguration(
                f"max_workers must be positive, got {self.max_workers}"
            )
