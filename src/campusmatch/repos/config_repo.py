"""AI configuration version store."""

from __future__ import annotations

import logging
import math
import threading
from typing import Callable, List, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campusmatch.db.schema import AiConfiguration
from campusmatch.errors import ConfigurationInvariantViolation, ValidationError
from campusmatch.models.domain import SAFE_DEFAULT_CONFIG, SIGNALS, ConfigSnapshot, Thresholds, Weights

logger = logging.getLogger(__name__)

# serializes writers inside one process; the unique version constraint covers the rest
_WRITE_LOCK = threading.Lock()
_MAX_CREATE_ATTEMPTS = 3

AlertFn = Callable[[ConfigurationInvariantViolation], None]


def _number(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be finite")
    return value


def thresholds_from_dict(data: Mapping) -> Thresholds:
    try:
        return Thresholds(
            auto_approve=_number("thresholds.autoApprove", data["autoApprove"]),
            partial_match=_number("thresholds.partialMatch", data["partialMatch"]),
        )
    except KeyError as e:
        raise ValidationError(f"missing threshold {e.args[0]}") from e


def weights_from_dict(data: Mapping) -> Weights:
    try:
        return Weights(**{name: _number(f"weights.{name}", data[name]) for name in SIGNALS})
    except KeyError as e:
        raise ValidationError(f"missing weight {e.args[0]}") from e


def validate_configuration(thresholds: Thresholds, weights: Weights) -> None:
    """Reject malformed thresholds/weights before anything is written."""
    auto = _number("thresholds.autoApprove", thresholds.auto_approve)
    partial = _number("thresholds.partialMatch", thresholds.partial_match)
    for name, value in (("autoApprove", auto), ("partialMatch", partial)):
        if not 0.0 <= value <= 100.0:
            raise ValidationError(f"thresholds.{name} must be within [0, 100], got {value}")
    if partial > auto:
        raise ValidationError("thresholds.partialMatch must not exceed thresholds.autoApprove")

    total = 0.0
    for name in SIGNALS:
        value = _number(f"weights.{name}", getattr(weights, name))
        if value < 0:
            raise ValidationError(f"weights.{name} must not be negative")
        total += value
    if total <= 0:
        raise ValidationError("weights must not all be zero")


def _log_alert(violation: ConfigurationInvariantViolation) -> None:
    logger.error("ALERT configuration invariant violated: %s", violation)


class ConfigurationRepository:
    """Repository for ai_configurations; the single source of the active configuration."""

    def __init__(self, session: Session, alert_fn: Optional[AlertFn] = None):
        self.session = session
        self.alert_fn = alert_fn or _log_alert

    def _enabled_rows(self) -> List[AiConfiguration]:
        return list(
            self.session.execute(
                select(AiConfiguration)
                .where(AiConfiguration.enabled.is_(True))
                .order_by(AiConfiguration.version.desc())
            ).scalars()
        )

    def check_invariant(self) -> AiConfiguration:
        """Return the single enabled row or raise ConfigurationInvariantViolation."""
        rows = self._enabled_rows()
        if len(rows) != 1:
            raise ConfigurationInvariantViolation(len(rows))
        return rows[0]

    def active(self) -> ConfigSnapshot:
        """
        Resolve the enabled configuration.

        Never raises for an invariant violation: the safe default is returned and the
        alert hook fires instead.
        """
        try:
            row = self.check_invariant()
        except ConfigurationInvariantViolation as violation:
            logger.error("falling back to safe default configuration: %s", violation)
            self.alert_fn(violation)
            return SAFE_DEFAULT_CONFIG
        return ConfigSnapshot.from_row(row)

    def max_version(self) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.max(AiConfiguration.version), 0))
            ).scalar_one()
        )

    def create_configuration(
        self,
        thresholds: Thresholds,
        weights: Weights,
        updated_by: str | None,
    ) -> ConfigSnapshot:
        """
        Append a new enabled version and disable every other one in the same transaction.
        """
        validate_configuration(thresholds, weights)

        with _WRITE_LOCK:
            for attempt in range(1, _MAX_CREATE_ATTEMPTS + 1):
                try:
                    row = self._insert_enabled(thresholds, weights, updated_by)
                    self.session.commit()
                except IntegrityError:
                    self.session.rollback()
                    logger.warning("configuration version collision (attempt %d), retrying", attempt)
                    continue
                except Exception:
                    self.session.rollback()
                    raise
                logger.info("configuration version %d activated by %s", row.version, updated_by)
                return ConfigSnapshot.from_row(row)

        raise RuntimeError("could not allocate a configuration version")

    def _insert_enabled(self, thresholds: Thresholds, weights: Weights, updated_by: str | None) -> AiConfiguration:
        next_version = self.max_version() + 1
        self.session.execute(
            update(AiConfiguration)
            .where(AiConfiguration.enabled.is_(True))
            .values(enabled=False)
        )
        row = AiConfiguration(
            version=next_version,
            auto_approve=float(thresholds.auto_approve),
            partial_match=float(thresholds.partial_match),
            weight_text=float(weights.text),
            weight_image=float(weights.image),
            weight_location=float(weights.location),
            weight_time=float(weights.time),
            enabled=True,
            updated_by=updated_by,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def list_versions(self) -> List[ConfigSnapshot]:
        rows = self.session.execute(
            select(AiConfiguration).order_by(AiConfiguration.version)
        ).scalars()
        return [ConfigSnapshot.from_row(r) for r in rows]

    def get_version(self, version: int) -> Optional[ConfigSnapshot]:
        row = self.session.execute(
            select(AiConfiguration).where(AiConfiguration.version == version)
        ).scalar_one_or_none()
        return ConfigSnapshot.from_row(row) if row else None
