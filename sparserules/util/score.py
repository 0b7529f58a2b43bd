import logging
import warnings
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import sklearn
from scipy.special import expit, softmax
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import Lasso, LogisticRegression
from sklearn.utils.fixes import parse_version

from sparserules.util.errors import DegradedFitWarning, StageError, TrainingCancelled
from sparserules.util.metrics import Family, mean_residual_deviance

logger = logging.getLogger(__name__)


class SparseLinearModel:
    """Linear model over the columns of an activation matrix.

    Parameters
    ----------
    family : Family
    coef : array of shape (n_targets, n_columns)
        One row for regression and binomial models, one row per class for
        multinomial models. Entries that are zero are not part of the model.
    intercept : array of shape (n_targets,)
    column_names : names of the activation columns
    n_rule_columns : the first n_rule_columns columns are rule indicators
    """

    def __init__(self, family: Family, coef, intercept, column_names: Sequence[str], n_rule_columns: int):
        self.family = Family(family)
        self.coef_ = np.atleast_2d(np.asarray(coef, dtype=float))
        self.intercept_ = np.atleast_1d(np.asarray(intercept, dtype=float))
        self.column_names = list(column_names)
        self.n_rule_columns = n_rule_columns

    @classmethod
    def intercept_only(cls, family: Family, y, sample_weight, n_classes, column_names, n_rule_columns):
        family = Family(family)
        n_columns = len(column_names)
        if family is Family.REGRESSION:
            return cls(family, np.zeros((1, n_columns)), [np.average(y, weights=sample_weight)],
                       column_names, n_rule_columns)
        priors = np.bincount(y, weights=sample_weight, minlength=n_classes) / np.sum(sample_weight)
        priors = np.clip(priors, 1e-15, 1 - 1e-15)
        if family is Family.BINOMIAL:
            intercept = [np.log(priors[1] / priors[0])]
        else:
            intercept = np.log(priors)
        return cls(family, np.zeros((len(intercept), n_columns)), intercept, column_names, n_rule_columns)

    def decision_function(self, A) -> np.ndarray:
        """Linear predictor, shape (n_samples, n_targets)."""
        return A @ self.coef_.T + self.intercept_

    def predict_proba(self, A) -> np.ndarray:
        eta = self.decision_function(A)
        if self.family is Family.BINOMIAL:
            p = expit(eta[:, 0])
            return np.column_stack([1 - p, p])
        if self.family is Family.MULTINOMIAL:
            return softmax(eta, axis=1)
        raise AttributeError('regression models have no predict_proba')

    def predict(self, A) -> np.ndarray:
        """Predicted values for regression, class indices for classification."""
        if self.family is Family.REGRESSION:
            return self.decision_function(A)[:, 0]
        return np.argmax(self.predict_proba(A), axis=1)

    def predictions_for_deviance(self, A) -> np.ndarray:
        if self.family is Family.REGRESSION:
            return self.predict(A)
        return self.predict_proba(A)

    def nonzero_columns(self) -> np.ndarray:
        return np.flatnonzero(np.any(self.coef_ != 0, axis=0))

    @property
    def n_nonzero_rules(self) -> int:
        return int(np.sum(self.nonzero_columns() < self.n_rule_columns))


@dataclass
class PathPoint:
    """One solution of the regularization path, on the original column scale."""
    alpha: float
    coef: np.ndarray
    intercept: np.ndarray
    deviance: float
    converged: bool

    def n_nonzero(self, columns=None) -> int:
        coef = self.coef if columns is None else self.coef[:, columns]
        return int(np.sum(np.any(coef != 0, axis=0)))


@dataclass
class LinearFit:
    model: SparseLinearModel
    path: List[PathPoint]
    selected_index: Optional[int]
    deviance: float
    degraded: bool = False


def _standardize(A, sample_weight):
    mean = np.average(A, axis=0, weights=sample_weight)
    std = np.sqrt(np.average((A - mean) ** 2, axis=0, weights=sample_weight))
    scale = np.where(std > 0, std, 1.0)
    return (A - mean) / scale, mean, scale


def _null_gradient(A_std, y, sample_weight, family, n_classes):
    """Gradient of the (weighted) loss at the intercept-only solution."""
    if family is Family.REGRESSION:
        y_mean = np.average(y, weights=sample_weight)
        return A_std.T @ (sample_weight * (y - y_mean)) / np.sum(sample_weight)
    Y = np.eye(n_classes)[y]
    priors = np.average(Y, axis=0, weights=sample_weight)
    if family is Family.BINOMIAL:
        return A_std.T @ (sample_weight * (Y[:, 1] - priors[1]))
    return A_std.T @ (sample_weight[:, None] * (Y - priors))


def _l1_logistic_params() -> dict:
    # scikit-learn 1.8 deprecates `penalty` in favour of `l1_ratio`
    if parse_version(sklearn.__version__).release >= (1, 8):
        return {'l1_ratio': 1.0}
    return {'penalty': 'l1'}


def _get_solver(family, max_iter, tol, random_state):
    if family is Family.REGRESSION:
        return Lasso(alpha=1.0, warm_start=True, max_iter=max_iter, tol=tol, random_state=random_state)
    return LogisticRegression(C=1.0, solver='saga', warm_start=True, max_iter=max_iter, tol=tol,
                              random_state=random_state, **_l1_logistic_params())


def fit_regularization_path(A, y, sample_weight, family: Family, n_classes=None, n_alphas=50, eps=1e-3,
                            max_iter=1000, tol=1e-4, random_state=None, cancel_event=None) -> List[PathPoint]:
    """Solve the L1 path from the strength that zeroes every coefficient down to eps times it.

    Columns are standardized (with sample weights) before solving and the
    coefficients mapped back to the original scale. Points are ordered from the
    strongest to the weakest regularization.

    Parameters
    ----------
    A : activation matrix, shape (n_samples, n_columns)
    y : targets, class indices for binomial / multinomial families
    sample_weight : array of shape (n_samples,)
    family : Family
    n_classes : number of classes for classification families
    """
    family = Family(family)
    if A.shape[1] == 0:
        null = SparseLinearModel.intercept_only(family, y, sample_weight, n_classes, [], 0)
        deviance = mean_residual_deviance(family, y, null.predictions_for_deviance(A), sample_weight)
        return [PathPoint(np.inf, null.coef_, null.intercept_, deviance, True)]

    A_std, mean, scale = _standardize(A, sample_weight)
    max_gradient = np.max(np.abs(_null_gradient(A_std, y, sample_weight, family, n_classes)))
    if not max_gradient > 0:
        max_gradient = 1.0
    alphas = np.geomspace(max_gradient, max_gradient * eps, n_alphas)

    solver = _get_solver(family, max_iter, tol, random_state)
    path = []
    for alpha in alphas:
        if cancel_event is not None and cancel_event.is_set():
            raise TrainingCancelled('training cancelled during the regularization path')
        if family is Family.REGRESSION:
            solver.set_params(alpha=alpha)
        else:
            # LogisticRegression takes the inverse of the regularization strength
            solver.set_params(C=1 / alpha)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', category=ConvergenceWarning)
            solver.fit(A_std, y, sample_weight=sample_weight)
        converged = bool(np.max(solver.n_iter_) < max_iter)

        coef = np.atleast_2d(solver.coef_) / scale
        intercept = np.atleast_1d(solver.intercept_) - coef @ mean
        point_model = SparseLinearModel(family, coef, intercept, [], 0)
        deviance = mean_residual_deviance(family, y, point_model.predictions_for_deviance(A), sample_weight)
        path.append(PathPoint(float(alpha), coef, intercept, deviance, converged))
        logger.debug('alpha=%.4g nonzero=%d deviance=%.5g converged=%s',
                     alpha, path[-1].n_nonzero(), deviance, converged)
    return path


def select_under_max_rules(path: List[PathPoint], n_rule_columns: int, max_rules: int) -> Optional[int]:
    """Index of the first converged point with the largest nonzero rule count not above max_rules."""
    best, best_count = None, -1
    rule_columns = np.arange(n_rule_columns)
    for i, point in enumerate(path):
        if not point.converged:
            continue
        count = point.n_nonzero(rule_columns)
        if best_count < count <= max_rules:
            best, best_count = i, count
    return best


def select_by_knee(path: List[PathPoint], knee_fraction: float = 0.01) -> Optional[int]:
    """Index of the point where adding terms stops paying off.

    Consecutive converged points that add nonzero terms form steps whose gain is
    the deviance drop per added term. Scanning from the strongest regularization
    towards the weakest, the first step whose gain falls below knee_fraction
    times the largest gain ends the scan and the point before it is selected.
    Leading steps below the cutoff, before any significant step, are skipped.
    """
    reps = []
    for i, point in enumerate(path):
        if not point.converged:
            continue
        if len(reps) == 0 or point.n_nonzero() > path[reps[-1]].n_nonzero():
            reps.append(i)
        elif point.n_nonzero() == path[reps[-1]].n_nonzero():
            # the weakest point of a run of equal size fits best
            reps[-1] = i
    if len(reps) == 0:
        return None

    gains = [(path[a].deviance - path[b].deviance) / (path[b].n_nonzero() - path[a].n_nonzero())
             for a, b in zip(reps[:-1], reps[1:])]
    if len(gains) == 0 or max(gains) <= 0:
        return reps[0]
    cutoff = knee_fraction * max(gains)
    start = next(i for i, gain in enumerate(gains) if gain >= cutoff)
    for i in range(start, len(gains)):
        if gains[i] < cutoff:
            return reps[i]
    return reps[-1]


def score_linear(A, y, sample_weight, family: Family, column_names: Sequence[str], n_rule_columns: int,
                 max_rules: int = -1, knee_fraction: float = 0.01, n_classes=None, n_alphas=50, eps=1e-3,
                 max_iter=1000, tol=1e-4, random_state=None, cancel_event=None) -> LinearFit:
    """Fit the regularization path and select the final sparse model.

    max_rules >= 0 bounds the number of nonzero rule coefficients, -1 selects
    the size automatically with select_by_knee. When the solver converges
    nowhere on the path, an intercept-only model is returned and a
    DegradedFitWarning is emitted.
    """
    family = Family(family)
    try:
        path = fit_regularization_path(A, y, sample_weight, family, n_classes=n_classes, n_alphas=n_alphas,
                                       eps=eps, max_iter=max_iter, tol=tol, random_state=random_state,
                                       cancel_event=cancel_event)
    except TrainingCancelled:
        raise
    except Exception as err:
        raise StageError('linear solver', str(err)) from err

    null = SparseLinearModel.intercept_only(family, y, sample_weight, n_classes, column_names, n_rule_columns)
    if not any(point.converged for point in path):
        warnings.warn(f'linear solver did not converge at any of the {len(path)} path points, '
                      'falling back to an intercept-only model; consider increasing max_iter',
                      DegradedFitWarning)
        deviance = mean_residual_deviance(family, y, null.predictions_for_deviance(A), sample_weight)
        return LinearFit(null, path, None, deviance, degraded=True)

    if max_rules >= 0:
        selected = select_under_max_rules(path, n_rule_columns, max_rules)
    else:
        selected = select_by_knee(path, knee_fraction)

    if selected is None:
        model = null
        deviance = mean_residual_deviance(family, y, null.predictions_for_deviance(A), sample_weight)
    else:
        point = path[selected]
        model = SparseLinearModel(family, point.coef, point.intercept, column_names, n_rule_columns)
        deviance = point.deviance
    logger.info('selected path point %s of %d: %d nonzero rules, %d nonzero terms, deviance %.5g',
                selected, len(path), model.n_nonzero_rules, len(model.nonzero_columns()), deviance)
    return LinearFit(model, path, selected, deviance)
