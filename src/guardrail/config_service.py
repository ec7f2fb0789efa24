"""
Per-tenant guardrail configuration.

Configs live in a ``TenantConfigStore`` so the guardrail reads them without
locking. Updates are validated, optionally persisted, and announced to
registered listeners (e.g. to drop cached decisions).
"""

from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable

from src.guardrail.audit import GuardrailAuditLogger
from src.guardrail.models import (
    AnswerabilityThreshold,
    FallbackConfig,
    TenantGuardrailConfig,
)
from src.guardrail.templates import DEFAULT_IDK_TEMPLATES
from src.guardrail.thresholds import PERMISSIVE, STRICT, custom_threshold, threshold_presets
from src.shared.config import GuardrailSection
from src.shared.config_store import DEFAULT_TENANT, TenantConfigStore
from src.shared.errors import ConfigValidationError
from src.shared.observability import get_logger

logger = get_logger(__name__)

ConfigListener = Callable[[TenantGuardrailConfig], None]

MIN_WEIGHT_SUM = 0.8
MAX_WEIGHT_SUM = 1.2


@runtime_checkable
class ConfigPersistenceProvider(Protocol):
    def save_config(self, config: TenantGuardrailConfig) -> None: ...

    def load_all_configs(self) -> List[TenantGuardrailConfig]: ...


class InMemoryConfigPersistence:
    """Persistence provider that keeps configs in a dict. Used in tests."""

    def __init__(self, configs: Optional[List[TenantGuardrailConfig]] = None):
        self._configs: Dict[str, TenantGuardrailConfig] = {
            c.tenant_id: c for c in configs or []
        }

    def save_config(self, config: TenantGuardrailConfig) -> None:
        self._configs[config.tenant_id] = config

    def load_all_configs(self) -> List[TenantGuardrailConfig]:
        return list(self._configs.values())


def default_tenant_config(
    tenant_id: str, section: Optional[GuardrailSection] = None
) -> TenantGuardrailConfig:
    section = section or GuardrailSection()
    return TenantGuardrailConfig(
        tenant_id=tenant_id,
        enabled=section.enabled,
        threshold=custom_threshold(section.answerability_threshold),
        idk_templates=list(DEFAULT_IDK_TEMPLATES),
        fallback=FallbackConfig(
            enabled=True,
            max_suggestions=section.max_suggestions,
            suggestion_threshold=section.suggestion_threshold,
        ),
        bypass_enabled=False,
    )


def validate_config(config: TenantGuardrailConfig) -> List[str]:
    """
    Check a tenant config.

    Returns:
        List of problems; empty when the config is valid
    """
    errors: List[str] = []
    t = config.threshold
    for name in ("min_confidence", "min_top_score", "min_mean_score", "max_std_dev"):
        value = getattr(t, name)
        if not 0 <= value <= 1:
            errors.append(f"threshold.{name} must be in [0, 1], got {value}")
    if not 0 <= t.min_result_count <= 100:
        errors.append(
            f"threshold.min_result_count must be in [0, 100], got {t.min_result_count}"
        )

    total = config.algorithm_weights.total()
    if not MIN_WEIGHT_SUM <= total <= MAX_WEIGHT_SUM:
        errors.append(
            f"algorithm weights must sum to [{MIN_WEIGHT_SUM}, {MAX_WEIGHT_SUM}], got {total:.3f}"
        )

    for template in config.idk_templates or []:
        if not template.id or not template.reason_code or not template.template:
            errors.append(
                f"idk template {template.id!r} needs id, reason_code and template"
            )

    if config.fallback is not None:
        if not 0 <= config.fallback.max_suggestions <= 10:
            errors.append(
                f"fallback.max_suggestions must be in [0, 10], got {config.fallback.max_suggestions}"
            )
        if not 0 <= config.fallback.suggestion_threshold <= 1:
            errors.append(
                "fallback.suggestion_threshold must be in [0, 1], "
                f"got {config.fallback.suggestion_threshold}"
            )
    return errors


class GuardrailConfigService:
    """Validated per-tenant guardrail configuration with change listeners."""

    def __init__(
        self,
        section: Optional[GuardrailSection] = None,
        store: Optional[TenantConfigStore[TenantGuardrailConfig]] = None,
        persistence: Optional[ConfigPersistenceProvider] = None,
        audit_logger: Optional[GuardrailAuditLogger] = None,
    ):
        self.section = section or GuardrailSection()
        self._store = store or TenantConfigStore(
            default=default_tenant_config(DEFAULT_TENANT, self.section),
            name="guardrail",
        )
        self._persistence = persistence
        self._audit = audit_logger or GuardrailAuditLogger()
        self._listeners: List[ConfigListener] = []
        self._initialize_default_configs()
        self._load_persisted_configs()

    def _initialize_default_configs(self) -> None:
        base = default_tenant_config(DEFAULT_TENANT, self.section)
        defaults = [
            base.model_copy(
                update={"tenant_id": "enterprise", "threshold": STRICT, "bypass_enabled": True}
            ),
            base.model_copy(update={"tenant_id": "startup", "threshold": PERMISSIVE}),
        ]
        # an injected store keeps whatever entries it already holds
        for config in defaults:
            if not self._store.has(config.tenant_id):
                self._store.put(config.tenant_id, config)

    def _load_persisted_configs(self) -> None:
        if self._persistence is None:
            return
        for config in self._persistence.load_all_configs():
            errors = validate_config(config)
            if errors:
                logger.error(
                    "persisted_guardrail_config_invalid",
                    tenant_id=config.tenant_id,
                    errors=errors,
                )
                continue
            self._store.put(config.tenant_id, config)

    def get_tenant_config(self, tenant_id: Optional[str]) -> TenantGuardrailConfig:
        """Tenant config, or the default config re-labelled for this tenant."""
        tenant_id = tenant_id or DEFAULT_TENANT
        config = self._store.get(tenant_id)
        if config.tenant_id != tenant_id:
            return config.model_copy(update={"tenant_id": tenant_id})
        return config

    def get_all_tenant_configs(self) -> List[TenantGuardrailConfig]:
        return list(self._store.snapshot().values())

    def validate_config(self, config: TenantGuardrailConfig) -> bool:
        return not validate_config(config)

    def update_tenant_config(
        self, config: TenantGuardrailConfig, updated_by: str = "system"
    ) -> None:
        """
        Validate and store a tenant config, then notify listeners.

        Raises:
            ConfigValidationError: If the config is invalid; nothing is stored
        """
        errors = validate_config(config)
        if errors:
            raise ConfigValidationError(errors)

        previous = self._store.put(config.tenant_id, config)
        if previous is None or previous.threshold != config.threshold:
            self._audit.log_threshold_update(
                config.tenant_id,
                previous.threshold if previous else None,
                config.threshold,
                updated_by=updated_by,
            )

        if self._persistence is not None:
            try:
                self._persistence.save_config(config)
            except Exception as exc:
                # In-memory config stays in force
                logger.error(
                    "guardrail_config_persist_failed",
                    tenant_id=config.tenant_id,
                    error=str(exc),
                )

        self._notify(config)

    def reset_tenant_config(self, tenant_id: str) -> TenantGuardrailConfig:
        config = default_tenant_config(tenant_id, self.section)
        self._store.put(tenant_id, config)
        self._notify(config)
        return config

    def threshold_presets(self) -> Dict[str, AnswerabilityThreshold]:
        return threshold_presets()

    def create_custom_threshold(
        self,
        min_confidence: float,
        min_top_score: float,
        min_mean_score: float,
        max_std_dev: float,
        min_result_count: int,
    ) -> AnswerabilityThreshold:
        return AnswerabilityThreshold(
            type="custom",
            min_confidence=min_confidence,
            min_top_score=min_top_score,
            min_mean_score=min_mean_score,
            max_std_dev=max_std_dev,
            min_result_count=min_result_count,
        )

    def add_listener(self, listener: ConfigListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConfigListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, config: TenantGuardrailConfig) -> None:
        for listener in list(self._listeners):
            try:
                listener(config)
            except Exception as exc:
                # One failing listener must not block the others
                logger.error(
                    "guardrail_config_listener_failed",
                    tenant_id=config.tenant_id,
                    error=str(exc),
                )
