# Configuration loader with environment variable support
# YAML (config/{env}.yaml) provides structure; Settings (env / .env) overrides
# the handful of values operators tune per deployment.

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings

from .models import FrozenModel, RagBaseModel

logger = logging.getLogger(__name__)

FUSION_STRATEGIES = {"rrf", "weighted_average", "score_weighted_rrf", "max_confidence"}
NORMALIZATION_METHODS = {"minmax", "zscore", "none"}


class AppConfig(BaseModel):
    name: str = "rag-retrieval-core"
    version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"


class TimeoutConfig(FrozenModel):
    """Per-stage time budgets in milliseconds."""

    vector_search: int = Field(default=5000, gt=0)
    keyword_search: int = Field(default=3000, gt=0)
    reranker: int = Field(default=10000, gt=0)
    embedding: int = Field(default=5000, gt=0)
    llm: int = Field(default=25000, gt=0)
    overall: int = Field(default=45000, gt=0)


class TenantTimeoutConfig(FrozenModel):
    tenant_id: str
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    fallback_enabled: bool = True


class IntentProfile(BaseModel):
    """Weights and fusion strategy applied to one query intent."""

    vector_weight: float = Field(ge=0.0, le=1.0)
    keyword_weight: float = Field(ge=0.0, le=1.0)
    retrieval_k: int = Field(gt=0)
    fusion_strategy: str = "rrf"

    @validator("fusion_strategy")
    def validate_strategy(cls, v):
        if v not in FUSION_STRATEGIES:
            raise ValueError(f"fusion_strategy must be one of {FUSION_STRATEGIES}, got {v}")
        return v


def _default_intents() -> Dict[str, IntentProfile]:
    return {
        "definition_measurement_procedure": IntentProfile(
            vector_weight=0.3, keyword_weight=0.7, retrieval_k=20
        ),
        "entity_lookup": IntentProfile(
            vector_weight=0.7, keyword_weight=0.3, retrieval_k=12
        ),
        "exploratory": IntentProfile(
            vector_weight=0.7, keyword_weight=0.3, retrieval_k=12
        ),
    }


class IntentConfigSection(BaseModel):
    high_confidence_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    high_confidence_top_k: int = Field(default=3, gt=0)
    profiles: Dict[str, IntentProfile] = Field(default_factory=_default_intents)


class RerankerConfig(BaseModel):
    enabled: bool = False
    base_url: str = "http://reranker:8080"
    model: str = "BAAI/bge-reranker-large"
    top_k: int = Field(default=8, gt=0)
    batch_size: int = Field(default=16, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=100, ge=0)
    circuit_failure_threshold: int = Field(default=5, gt=0)
    circuit_recovery_timeout: float = Field(default=30.0, gt=0)


class SearchConfig(BaseModel):
    collection: str = "documents"
    limit: int = Field(default=8, gt=0)
    rrf_k: int = Field(default=60, gt=0)
    normalization: str = "minmax"
    keyword_search_enabled: bool = True
    intent: IntentConfigSection = Field(default_factory=IntentConfigSection)
    reranker: RerankerConfig = Field(default_factory=RerankerConfig)

    @validator("normalization")
    def validate_normalization(cls, v):
        if v not in NORMALIZATION_METHODS:
            raise ValueError(
                f"normalization must be one of {NORMALIZATION_METHODS}, got {v}"
            )
        return v


class DirectAnswerRule(FrozenModel):
    """Query shape + content pattern that earns the direct-answer bonus."""

    name: str
    query_pattern: str
    content_pattern: str

    @validator("query_pattern", "content_pattern")
    def validate_pattern(cls, v):
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"invalid regular expression {v!r}: {exc}") from exc
        return v


def _default_direct_answer_rules() -> List[DirectAnswerRule]:
    return [
        DirectAnswerRule(
            name="duration_of_day",
            query_pattern=r"how long.*day|day.*how long",
            content_pattern=r"\b\d+(?:\.\d+)?\s*(?:hours?|hrs?|minutes?|mins?)\b",
        ),
        DirectAnswerRule(
            name="quantity",
            query_pattern=r"how (?:much|many)",
            content_pattern=(
                r"\b\d+(?:\.\d+)?\s*"
                r"(?:(?:days?|hours?|meters?|feet|foot|kg|pounds?|percent)\b|%)"
            ),
        ),
        DirectAnswerRule(
            name="definition",
            query_pattern=r"what (?:is|are)",
            content_pattern=r"\b(?:is|are|means|refers to|defined as)\b",
        ),
    ]


class AnswerabilityBonusConfig(FrozenModel):
    enabled: bool = True
    base_bonus: float = Field(default=0.1, ge=0.0, le=0.5)
    direct_answer_bonus: float = Field(default=0.5, ge=0.0)
    direct_answer_rules: List[DirectAnswerRule] = Field(
        default_factory=_default_direct_answer_rules
    )


class NoveltyConfig(FrozenModel):
    enabled: bool = True
    alpha: float = Field(default=0.5, ge=0.0, le=1.0)
    max_results: int = Field(default=8, gt=0)
    use_embeddings: bool = True


class TokenBudgetConfig(FrozenModel):
    model: str = "gpt-4o"
    token_budget: int = Field(default=8000, gt=0)
    safety_margin: int = Field(default=100, ge=0)


class ContextConfig(FrozenModel):
    per_doc_cap: int = Field(default=2, gt=0)
    answerability: AnswerabilityBonusConfig = Field(
        default_factory=AnswerabilityBonusConfig
    )
    novelty: NoveltyConfig = Field(default_factory=NoveltyConfig)
    budget: TokenBudgetConfig = Field(default_factory=TokenBudgetConfig)


class GuardrailSection(BaseModel):
    enabled: bool = True
    answerability_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_suggestions: int = Field(default=3, ge=0, le=10)
    suggestion_threshold: float = Field(default=0.3, ge=0.0, le=1.0)


class Config(RagBaseModel):
    """Main configuration model"""

    app: AppConfig = Field(default_factory=AppConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    guardrail: GuardrailSection = Field(default_factory=GuardrailSection)


class Settings(BaseSettings):
    """Environment-based settings"""

    env: str = Field(default="development", alias="ENV")
    config_path: Optional[str] = Field(default=None, alias="CONFIG_PATH")

    log_level: Optional[str] = Field(default=None, alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Reranker
    reranker_enabled: Optional[bool] = Field(default=None, alias="RERANKER_ENABLED")
    reranker_service_url: Optional[str] = Field(
        default=None, alias="RERANKER_SERVICE_URL"
    )
    reranker_top_k: Optional[int] = Field(default=None, alias="RERANKER_TOPN_OUT")

    # Guardrail
    guardrail_enabled: Optional[bool] = Field(default=None, alias="GUARDRAIL_ENABLED")
    answerability_threshold: Optional[float] = Field(
        default=None, alias="ANSWERABILITY_THRESHOLD"
    )

    # Context packing
    tokenizer_model: Optional[str] = Field(default=None, alias="TOKENIZER_MODEL")
    context_token_budget: Optional[int] = Field(
        default=None, alias="CONTEXT_TOKEN_BUDGET"
    )

    # Stage timeouts (ms)
    vector_search_timeout_ms: Optional[int] = Field(
        default=None, alias="VECTOR_SEARCH_TIMEOUT_MS"
    )
    keyword_search_timeout_ms: Optional[int] = Field(
        default=None, alias="KEYWORD_SEARCH_TIMEOUT_MS"
    )
    reranker_timeout_ms: Optional[int] = Field(default=None, alias="RERANKER_TIMEOUT_MS")
    embedding_timeout_ms: Optional[int] = Field(
        default=None, alias="EMBEDDING_TIMEOUT_MS"
    )
    llm_timeout_ms: Optional[int] = Field(default=None, alias="LLM_TIMEOUT_MS")
    overall_timeout_ms: Optional[int] = Field(default=None, alias="OVERALL_TIMEOUT_MS")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


_TIMEOUT_OVERRIDES = {
    "vector_search": "vector_search_timeout_ms",
    "keyword_search": "keyword_search_timeout_ms",
    "reranker": "reranker_timeout_ms",
    "embedding": "embedding_timeout_ms",
    "llm": "llm_timeout_ms",
    "overall": "overall_timeout_ms",
}


def apply_settings_overrides(config: Config, settings: Settings) -> Config:
    """
    Return a copy of ``config`` with environment overrides applied.

    Only settings that were explicitly provided take effect; YAML values stay
    in force otherwise.
    """
    timeout_updates = {
        field: getattr(settings, attr)
        for field, attr in _TIMEOUT_OVERRIDES.items()
        if getattr(settings, attr) is not None
    }
    timeouts = (
        config.timeouts.model_copy(update=timeout_updates)
        if timeout_updates
        else config.timeouts
    )

    reranker_updates = {}
    if settings.reranker_enabled is not None:
        reranker_updates["enabled"] = settings.reranker_enabled
    if settings.reranker_service_url:
        reranker_updates["base_url"] = settings.reranker_service_url
    if settings.reranker_top_k is not None:
        reranker_updates["top_k"] = settings.reranker_top_k
    search = config.search.model_copy(
        update={"reranker": config.search.reranker.model_copy(update=reranker_updates)}
    )

    guardrail_updates = {}
    if settings.guardrail_enabled is not None:
        guardrail_updates["enabled"] = settings.guardrail_enabled
    if settings.answerability_threshold is not None:
        guardrail_updates["answerability_threshold"] = settings.answerability_threshold
    guardrail = config.guardrail.model_copy(update=guardrail_updates)

    budget_updates = {}
    if settings.tokenizer_model:
        budget_updates["model"] = settings.tokenizer_model
    if settings.context_token_budget is not None:
        budget_updates["token_budget"] = settings.context_token_budget
    context = config.context.model_copy(
        update={"budget": config.context.budget.model_copy(update=budget_updates)}
    )

    app = config.app
    if settings.log_level:
        app = app.model_copy(update={"log_level": settings.log_level})

    return config.model_copy(
        update={
            "app": app,
            "timeouts": timeouts,
            "search": search,
            "guardrail": guardrail,
            "context": context,
        }
    )


def resolve_config_path(settings: Settings) -> Path:
    if settings.config_path:
        return Path(settings.config_path)
    return Path(__file__).parent.parent.parent / "config" / f"{settings.env}.yaml"


def load_config(settings: Optional[Settings] = None) -> tuple[Config, Settings]:
    """
    Load configuration from YAML file and environment variables.

    Called once at process start; the returned objects are passed explicitly
    to every component constructor.

    Returns:
        tuple: (Config, Settings) - YAML config and environment settings

    Raises:
        FileNotFoundError: If config file not found
        pydantic.ValidationError: If configuration validation fails
    """
    settings = settings or Settings()
    config_path = resolve_config_path(settings)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f) or {}

    config = Config(**config_dict)
    config = apply_settings_overrides(config, settings)
    return config, settings
