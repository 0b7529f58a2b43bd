import pytest
from sklearn.base import clone
from sklearn.datasets import make_regression, make_classification

from sparserules import *


classifiers = [
    RuleFitClassifier(),
    RuleFitClassifier(algorithm='gbm', max_rule_length=4),
    RuleFitClassifier(model_type='rules', max_num_rules=3),
    RuleFitClassifier(model_type='linear'),
]

regressors = [
    RuleFitRegressor(),
    RuleFitRegressor(algorithm='gbm', min_rule_length=1),
    RuleFitRegressor(model_type='linear'),
]


@pytest.mark.parametrize("classifier", classifiers)
def test_fit_classifier(classifier) -> None:
    X, y = make_classification(n_samples=25, n_features=5)
    classifier = clone(classifier)
    classifier.fit(X, y)
    assert classifier.predict(X).shape == (25,)


@pytest.mark.parametrize("regressor", regressors)
def test_fit_regressor(regressor) -> None:
    X, y = make_regression(n_samples=25, n_features=5)
    regressor = clone(regressor)
    regressor.fit(X, y)
    assert regressor.predict(X).shape == (25,)
