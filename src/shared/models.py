from pydantic import BaseModel, ConfigDict


class RagBaseModel(BaseModel):
    model_config = ConfigDict(
        protected_namespaces=(),  # allow fields like model_id
        arbitrary_types_allowed=True,
    )


class FrozenModel(RagBaseModel):
    """Immutable value object; replaced wholesale, never mutated in place."""

    model_config = ConfigDict(
        protected_namespaces=(),
        arbitrary_types_allowed=True,
        frozen=True,
    )
