"""Classifier wrappers with a common Train/Predict contract."""

from solsignal.models.base_model import BaseModel
from solsignal.models.lightgbm_model import LightGBMModel
from solsignal.models.xgboost_model import XGBoostModel


MODEL_TYPES = ("lightgbm", "xgboost")


def create_model(model_type: str, name: str, n_classes: int = 2, random_state: int = 42) -> BaseModel:
    """
    Create an untrained classifier.

    Args:
        model_type: "lightgbm" or "xgboost"
        name: Model name used in logs
        n_classes: Number of label classes
        random_state: Seed

    Returns:
        BaseModel instance
    """
    if model_type == "lightgbm":
        return LightGBMModel(name=name, n_classes=n_classes, random_state=random_state)
    if model_type == "xgboost":
        return XGBoostModel(name=name, n_classes=n_classes, random_state=random_state)
    raise ValueError(f"Unknown model type: {model_type}. Expected one of {MODEL_TYPES}")


__all__ = ["BaseModel", "LightGBMModel", "XGBoostModel", "MODEL_TYPES", "create_model"]
