"""
wagertrace/core/config.py

Settings for a wagertrace deployment.

Load order:
    1. dataclass defaults
    2. YAML file           (Settings.from_yaml)
    3. WAGERTRACE_* env    (Settings.from_env, applied on top)

Example YAML:

    provisional_window_seconds: 600
    facilitator_agent: agent-facilitator-1
    ledger_path: .wagertrace
    dispute:
      grace_ms: 100
      latency_fault_ms: 100
"""

import os
from dataclasses import dataclass, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from wagertrace.core.exceptions import ValidationError

ENV_PREFIX = "WAGERTRACE_"


@dataclass(frozen=True)
class Settings:
    provisional_window_seconds: int   = 600
    full_token_days:            int   = 30
    facilitator_agent:          str   = "agent-facilitator-1"
    operator_payee:             str   = "operator"
    default_payment_method:     str   = "pix"
    dispute_grace_ms:           int   = 100
    latency_fault_ms:           int   = 100
    recent_dispute_days:        int   = 30
    trusted_success_rate:       float = 0.95
    dispatch_workers:           int   = 4
    ledger_path:                Optional[str] = None
    key_path:                   Optional[str] = None

    # ── Derived ───────────────────────────────────────────────

    @property
    def provisional_window(self) -> timedelta:
        return timedelta(seconds=self.provisional_window_seconds)

    @property
    def full_token_ttl(self) -> timedelta:
        return timedelta(days=self.full_token_days)

    @property
    def recent_dispute_window(self) -> timedelta:
        return timedelta(days=self.recent_dispute_days)

    # ── Loading ───────────────────────────────────────────────

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "Settings":
        """Build settings from a flat or sectioned mapping."""
        flat = dict(data or {})
        dispute = flat.pop("dispute", None) or {}
        if "grace_ms" in dispute:
            flat["dispute_grace_ms"] = dispute["grace_ms"]
        if "latency_fault_ms" in dispute:
            flat["latency_fault_ms"] = dispute["latency_fault_ms"]

        known   = {f.name for f in fields(cls)}
        unknown = sorted(set(flat) - known)
        if unknown:
            raise ValidationError(
                "Unknown settings keys",
                details={"keys": ",".join(unknown)},
                reason="invalid_config",
            )
        return cls(**flat).validated()

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValidationError(
                f"Settings file {path} must contain a mapping",
                reason="invalid_config",
            )
        return cls.from_mapping(data)

    def from_env(self, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """Return a copy with WAGERTRACE_<FIELD> overrides applied."""
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            overrides[f.name] = _coerce(f.name, raw, type(getattr(self, f.name)))
        return replace(self, **overrides).validated() if overrides else self

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Settings":
        base = cls.from_yaml(path) if path is not None else cls()
        return base.from_env()

    def validated(self) -> "Settings":
        if self.provisional_window_seconds <= 0:
            raise ValidationError(
                "provisional_window_seconds must be positive", reason="invalid_config"
            )
        if self.dispute_grace_ms < 0 or self.latency_fault_ms < 0:
            raise ValidationError(
                "dispute thresholds must be non-negative", reason="invalid_config"
            )
        if not 0.0 <= self.trusted_success_rate <= 1.0:
            raise ValidationError(
                "trusted_success_rate must be within [0, 1]", reason="invalid_config"
            )
        if self.dispatch_workers < 1:
            raise ValidationError(
                "dispatch_workers must be at least 1", reason="invalid_config"
            )
        return self


def _coerce(name: str, raw: str, current_type: type) -> Any:
    try:
        if current_type is bool:
            return raw.lower() in ("1", "true", "yes")
        if current_type is int:
            return int(raw)
        if current_type is float:
            return float(raw)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid value for {ENV_PREFIX}{name.upper()}",
            details={"value": raw},
            reason="invalid_config",
        ) from exc
    return raw
