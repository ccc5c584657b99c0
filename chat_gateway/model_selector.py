from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .settings import Settings


@dataclass(frozen=True)
class ModelSelection:
    model: str
    fallback_model: Optional[str] = None

    @property
    def can_fallback(self) -> bool:
        return self.fallback_model is not None and self.fallback_model != self.model


def select_models(requested_model: Optional[str], cfg: Settings) -> ModelSelection:
    """
    Resolve the model to call and the single fallback to use on rate limits.

    The fallback is dropped when it would repeat the selected model.
    """
    model = (requested_model or "").strip() or cfg.default_model
    return ModelSelection(model=model, fallback_model=cfg.fallback_model_for(model))


__all__ = ["ModelSelection", "select_models"]
