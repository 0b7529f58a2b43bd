'''Model metrics for the three response families
'''
from copy import deepcopy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional

import numpy as np
from sklearn.metrics import accuracy_score, log_loss, mean_absolute_error, mean_squared_error, r2_score, \
    roc_auc_score


class Family(str, Enum):
    BINOMIAL = 'binomial'
    MULTINOMIAL = 'multinomial'
    REGRESSION = 'regression'

    @property
    def is_classification(self) -> bool:
        return self is not Family.REGRESSION


def infer_family(n_classes: Optional[int]) -> Family:
    """Family of a response: None classes means regression."""
    if n_classes is None:
        return Family.REGRESSION
    return Family.BINOMIAL if n_classes == 2 else Family.MULTINOMIAL


@dataclass
class ModelMetrics:
    """Metrics of a model on one frame.

    ``values`` maps metric names (``mse``, ``logloss``, ``auc``, ...) to floats;
    ``mean_residual_deviance`` is always present.
    """
    family: Family
    values: Dict[str, float] = field(default_factory=dict)
    nobs: int = 0
    model_id: Optional[str] = None
    frame_id: Optional[str] = None

    def __getitem__(self, name: str) -> float:
        return self.values[name]

    @property
    def deviance(self) -> float:
        return self.values['mean_residual_deviance']

    def clone(self, model_id: Optional[str] = None, frame_id: Optional[str] = None) -> 'ModelMetrics':
        """Deep copy attached to another model and frame."""
        return replace(deepcopy(self), model_id=model_id, frame_id=frame_id)

    def __str__(self):
        values = ', '.join(f'{k}={v:.5g}' for k, v in self.values.items())
        return f'ModelMetrics({self.family.value}, nobs={self.nobs}: {values})'


def mean_residual_deviance(family: Family, y, preds, sample_weight=None) -> float:
    """Deviance per observation: 2 x log loss for classifiers, mean squared error for regression."""
    family = Family(family)
    if family is Family.REGRESSION:
        return float(mean_squared_error(y, preds, sample_weight=sample_weight))
    if family is Family.BINOMIAL:
        proba = np.clip(preds[:, 1], 1e-15, 1 - 1e-15)
        return float(2 * log_loss(y, np.column_stack([1 - proba, proba]), sample_weight=sample_weight,
                                  labels=[0, 1]))
    return float(2 * log_loss(y, preds, sample_weight=sample_weight, labels=np.arange(preds.shape[1])))


def _binomial_metrics(y, preds, sample_weight) -> Dict[str, float]:
    deviance = mean_residual_deviance(Family.BINOMIAL, y, preds, sample_weight)
    proba = preds[:, 1]
    values = {
        'logloss': deviance / 2,
        'mse': mean_squared_error(y, proba, sample_weight=sample_weight),
        'accuracy': accuracy_score(y, (proba > 0.5).astype(int), sample_weight=sample_weight),
        'mean_residual_deviance': deviance,
    }
    values['rmse'] = np.sqrt(values['mse'])
    if len(np.unique(y)) == 2:
        values['auc'] = roc_auc_score(y, proba, sample_weight=sample_weight)
    return values


def _multinomial_metrics(y, preds, sample_weight) -> Dict[str, float]:
    deviance = mean_residual_deviance(Family.MULTINOMIAL, y, preds, sample_weight)
    one_hot = np.eye(preds.shape[1])[y]
    mse = np.average(np.sum((one_hot - preds) ** 2, axis=1), weights=sample_weight)
    return {
        'logloss': deviance / 2,
        'mse': mse,
        'rmse': np.sqrt(mse),
        'accuracy': accuracy_score(y, np.argmax(preds, axis=1), sample_weight=sample_weight),
        'mean_residual_deviance': deviance,
    }


def _regression_metrics(y, preds, sample_weight) -> Dict[str, float]:
    mse = mean_residual_deviance(Family.REGRESSION, y, preds, sample_weight)
    values = {
        'mse': mse,
        'rmse': np.sqrt(mse),
        'mae': mean_absolute_error(y, preds, sample_weight=sample_weight),
        'mean_residual_deviance': mse,
    }
    if len(y) > 1:
        values['r2'] = r2_score(y, preds, sample_weight=sample_weight)
    return values


_METRIC_FACTORIES = {
    Family.BINOMIAL: _binomial_metrics,
    Family.MULTINOMIAL: _multinomial_metrics,
    Family.REGRESSION: _regression_metrics,
}


def make_metrics(family: Family, y, preds, sample_weight=None, model_id=None, frame_id=None) -> ModelMetrics:
    """Build the metrics of one family.

    Parameters
    ----------
    family : Family
    y : array of class indices (classification) or real targets (regression)
    preds : class probabilities of shape (n_samples, n_classes), or predicted values for regression
    sample_weight : array, optional
    """
    y = np.asarray(y)
    preds = np.asarray(preds, dtype=float)
    values = _METRIC_FACTORIES[Family(family)](y, preds, sample_weight)
    return ModelMetrics(family=Family(family), values={k: float(v) for k, v in values.items()},
                        nobs=len(y), model_id=model_id, frame_id=frame_id)
