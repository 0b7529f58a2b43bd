import numpy as np
import pytest

from sparserules.util.metrics import Family, ModelMetrics, infer_family, make_metrics


def test_infer_family():
    assert infer_family(None) is Family.REGRESSION
    assert infer_family(2) is Family.BINOMIAL
    assert infer_family(5) is Family.MULTINOMIAL
    assert Family.BINOMIAL.is_classification
    assert not Family.REGRESSION.is_classification


def test_regression_metrics():
    y = np.array([1.0, 2.0, 3.0, 4.0])
    preds = np.array([1.5, 2.0, 2.5, 4.0])
    metrics = make_metrics(Family.REGRESSION, y, preds, model_id='m', frame_id='f')
    assert metrics['mse'] == pytest.approx(0.125)
    assert metrics['mae'] == pytest.approx(0.25)
    assert metrics.deviance == metrics['mse']
    assert metrics.nobs == 4
    assert (metrics.model_id, metrics.frame_id) == ('m', 'f')


def test_binomial_metrics():
    y = np.array([0, 1, 1, 0])
    proba = np.array([0.1, 0.8, 0.6, 0.3])
    metrics = make_metrics(Family.BINOMIAL, y, np.column_stack([1 - proba, proba]))
    assert metrics['auc'] == pytest.approx(1.0)
    assert metrics['accuracy'] == pytest.approx(1.0)
    assert metrics.deviance == pytest.approx(2 * metrics['logloss'])


def test_multinomial_metrics():
    y = np.array([0, 1, 2])
    preds = np.eye(3) * 0.7 + 0.1
    metrics = make_metrics(Family.MULTINOMIAL, y, preds)
    assert metrics['accuracy'] == pytest.approx(1.0)
    assert metrics['logloss'] == pytest.approx(-np.log(0.8))


def test_clone_is_independent():
    metrics = ModelMetrics(Family.REGRESSION, {'mse': 1.0, 'mean_residual_deviance': 1.0}, nobs=3,
                           model_id='a', frame_id='x')
    clone = metrics.clone(model_id='b', frame_id='y')
    clone.values['mse'] = 2.0
    assert metrics['mse'] == 1.0
    assert (clone.model_id, clone.frame_id) == ('b', 'y')
    assert 'mse=1' in str(metrics)
