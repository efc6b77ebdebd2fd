"""Test LightGBM model implementation."""
import pytest
import numpy as np

from solsignal.models import LightGBMModel, MODEL_TYPES, create_model
from solsignal.utils.time_contract import UTC

from datetime import datetime


@pytest.fixture
def sample_data():
    """Generate sample training data."""
    rng = np.random.default_rng(42)
    X = rng.random((100, 10))
    y = (X[:, 0] + rng.normal(0.0, 0.1, 100) > 0.5).astype(int)
    return X, y


def test_model_initialization():
    """Model initialization with default and custom parameters."""
    model = LightGBMModel(name="move")

    assert model.name == "move"
    assert model.model_type == "lightgbm"
    assert model.is_trained is False
    assert model.n_estimators == 100
    assert model.max_depth == 4

    custom = LightGBMModel(name="sl", n_estimators=50, learning_rate=0.1)
    assert custom.n_estimators == 50
    assert custom.learning_rate == 0.1


def test_train_and_predict(sample_data):
    X, y = sample_data
    as_of = UTC.localize(datetime(2024, 6, 1, 12, 0))
    model = LightGBMModel(name="move")
    model.train(X, y, as_of=as_of)

    proba = model.predict_proba(X[:5])
    assert model.is_trained
    assert model.trained_as_of == as_of
    assert model.training_samples == 100
    assert proba.shape == (5, 2)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)
    assert model.train_accuracy > 0.7


def test_single_vector_prediction(sample_data):
    X, y = sample_data
    model = LightGBMModel(name="move")
    model.train(X, y)
    assert model.positive_proba(X[0]).shape == (1,)


def test_single_class_is_constant(sample_data):
    X, _ = sample_data
    model = LightGBMModel(name="micro")
    model.train(X, np.ones(len(X), dtype=int))

    np.testing.assert_array_equal(model.predict_proba(X[:3]), [[0.0, 1.0]] * 3)
    assert model.train_accuracy == 1.0


def test_absent_class_gets_zero():
    rng = np.random.default_rng(1)
    X = rng.random((60, 4))
    y = np.where(X[:, 0] > 0.5, 2, 0)
    model = LightGBMModel(name="triple", n_classes=3)
    model.train(X, y)

    proba = model.predict_proba(X[:4])
    assert proba.shape == (4, 3)
    np.testing.assert_array_equal(proba[:, 1], 0.0)


def test_invalid_training_sets(sample_data):
    X, y = sample_data
    model = LightGBMModel(name="move")
    with pytest.raises(ValueError):
        model.train(X, y[:-1])
    with pytest.raises(ValueError):
        model.train(X, y + 5)
    with pytest.raises(ValueError):
        model.predict_proba(X)


def test_create_model_factory():
    assert MODEL_TYPES == ("lightgbm", "xgboost")
    assert isinstance(create_model("lightgbm", "move"), LightGBMModel)
    with pytest.raises(ValueError):
        create_model("lstm", "move")


def test_deterministic_with_seed(sample_data):
    X, y = sample_data
    a = LightGBMModel(name="move", random_state=7)
    b = LightGBMModel(name="move", random_state=7)
    a.train(X, y)
    b.train(X, y)
    np.testing.assert_array_equal(a.predict_proba(X), b.predict_proba(X))
