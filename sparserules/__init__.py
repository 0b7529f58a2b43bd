"""
.. include:: ../readme.md
"""
# Python `sparserules` package: sparse linear models over decision rules extracted from tree ensembles,
# compatible with scikit-learn.

from .rule_set.rule_ensemble import RuleEnsemble
from .rule_set.rule_fit import RuleFitRegressor, RuleFitClassifier
from .util.arguments import Algorithm, ModelType
from .util.errors import RuleFitValidationError, RuleLimitError, SchemaError, StageError, TrainingCancelled, \
    DegradedFitWarning
from .util.metrics import Family, ModelMetrics
from .util.rule import Condition, Rule

CLASSIFIERS = [RuleFitClassifier]
REGRESSORS = [RuleFitRegressor]
