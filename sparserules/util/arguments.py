from enum import Enum

import numpy as np
import pandas as pd
from sklearn.base import ClassifierMixin
from sklearn.utils.multiclass import check_classification_targets
from sklearn.utils.validation import _check_sample_weight, check_consistent_length

from sparserules.util.errors import RuleFitValidationError
from sparserules.util.transforms import FrameSchema


class Algorithm(str, Enum):
    DRF = 'drf'
    GBM = 'gbm'
    AUTO = 'auto'


class ModelType(str, Enum):
    RULES = 'rules'
    RULES_AND_LINEAR = 'rules_and_linear'
    LINEAR = 'linear'

    @property
    def has_rules(self) -> bool:
        return self is not ModelType.LINEAR

    @property
    def has_linear(self) -> bool:
        return self is not ModelType.RULES


def _as_enum(enum_cls, value, name):
    try:
        return enum_cls(value.lower() if isinstance(value, str) else value)
    except ValueError:
        options = [e.value for e in enum_cls]
        raise RuleFitValidationError(f'{name}={value!r} is not one of {options}') from None


def check_rulefit_params(model):
    """Validate estimator parameters before any training work starts.

    Returns the resolved (algorithm, model_type) enums.
    """
    algorithm = _as_enum(Algorithm, model.algorithm, 'algorithm')
    model_type = _as_enum(ModelType, model.model_type, 'model_type')
    if model_type is ModelType.LINEAR and algorithm is not Algorithm.AUTO:
        raise RuleFitValidationError(
            f"model_type='linear' builds no rules, algorithm={algorithm.value!r} would never be used")
    if model.min_rule_length < 1:
        raise RuleFitValidationError(f'min_rule_length must be >= 1, got {model.min_rule_length}')
    if model.min_rule_length > model.max_rule_length:
        raise RuleFitValidationError(
            f'min_rule_length ({model.min_rule_length}) > max_rule_length ({model.max_rule_length})')
    if model.rule_generation_ntrees <= 0:
        raise RuleFitValidationError(
            f'rule_generation_ntrees must be positive, got {model.rule_generation_ntrees}')
    if model.max_num_rules < -1:
        raise RuleFitValidationError(f'max_num_rules must be -1 (automatic) or >= 0, got {model.max_num_rules}')
    if model.max_candidate_rules is not None and model.max_candidate_rules <= 0:
        raise RuleFitValidationError('max_candidate_rules must be positive')
    if not 0 <= model.knee_fraction < 1:
        raise RuleFitValidationError(f'knee_fraction must lie in [0, 1), got {model.knee_fraction}')
    if algorithm is Algorithm.AUTO:
        algorithm = Algorithm.DRF
    return algorithm, model_type


def check_fit_arguments(model, X, y, feature_names, sample_weight=None):
    """Process arguments for fit.

    Fits the model's frame schema on X and returns the encoded matrix, the
    target (class indices for classifiers) and the sample weights.
    """
    if np.ndim(X) != 2:
        raise ValueError(f'Expected 2D input, got an array of {np.ndim(X)} dimensions')
    y = np.asarray(y.values if isinstance(y, (pd.Series, pd.DataFrame)) else y).ravel()
    check_consistent_length(X, y)
    if isinstance(model, ClassifierMixin):
        check_classification_targets(y)
        model.classes_, y = np.unique(y, return_inverse=True)  # deals with str inputs
        if len(model.classes_) < 2:
            raise ValueError(f'Classifier needs samples of at least 2 classes, got {model.classes_}')
    else:
        y = y.astype(float)
        if not np.all(np.isfinite(y)):
            raise ValueError('Regression targets contain NaN or infinity')

    model.schema_ = FrameSchema().fit(X, feature_names=feature_names)
    model.feature_names_ = list(model.schema_.feature_names)
    model.n_features_in_ = len(model.feature_names_)
    X_encoded = model.schema_.encode(X)
    sample_weight = _check_sample_weight(sample_weight, X_encoded)
    return X_encoded, y, sample_weight
