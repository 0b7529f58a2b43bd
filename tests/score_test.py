import warnings

import numpy as np
import pytest

from sparserules.util.errors import DegradedFitWarning, TrainingCancelled
from sparserules.util.metrics import Family, make_metrics, mean_residual_deviance
from sparserules.util.score import PathPoint, SparseLinearModel, fit_regularization_path, score_linear, \
    select_by_knee, select_under_max_rules


def _point(n_nonzero, deviance, n_columns=10, converged=True):
    coef = np.zeros((1, n_columns))
    coef[0, :n_nonzero] = 1.0
    return PathPoint(alpha=1.0, coef=coef, intercept=np.zeros(1), deviance=deviance, converged=converged)


class TestSelection:

    def test_under_max_rules(self):
        path = [_point(0, 10.0), _point(2, 8.0), _point(2, 7.5), _point(5, 5.0), _point(8, 4.0)]
        assert select_under_max_rules(path, n_rule_columns=10, max_rules=3) == 1
        assert select_under_max_rules(path, n_rule_columns=10, max_rules=5) == 3
        assert select_under_max_rules(path, n_rule_columns=10, max_rules=100) == 4
        # only the rule columns count
        assert select_under_max_rules(path, n_rule_columns=1, max_rules=1) == 1

    def test_under_max_rules_skips_unconverged(self):
        path = [_point(0, 10.0), _point(2, 8.0, converged=False), _point(4, 6.0)]
        assert select_under_max_rules(path, n_rule_columns=10, max_rules=3) == 0
        assert select_under_max_rules([_point(3, 1.0, converged=False)], 10, 5) is None

    def test_knee(self):
        # large gains up to 3 terms, then flat
        path = [_point(0, 10.0), _point(1, 6.0), _point(3, 2.0), _point(6, 1.99), _point(9, 1.98)]
        assert select_by_knee(path, knee_fraction=0.01) == 2
        # with no threshold every step counts
        assert select_by_knee(path, knee_fraction=0.0) == 4

    def test_knee_keeps_weakest_of_equal_size(self):
        path = [_point(0, 10.0), _point(2, 5.0), _point(2, 4.0)]
        assert select_by_knee(path) == 2

    def test_knee_stops_at_first_plateau(self):
        # per-term gains 4, 0.001, 1, 0.001: the later drop does not outweigh the plateau
        path = [_point(0, 10.0), _point(1, 6.0), _point(2, 5.999), _point(3, 4.999), _point(4, 4.998)]
        assert select_by_knee(path, knee_fraction=0.01) == 1

    def test_knee_skips_leading_small_steps(self):
        path = [_point(0, 10.0), _point(1, 9.999), _point(2, 5.999), _point(3, 5.998)]
        assert select_by_knee(path, knee_fraction=0.01) == 2

    def test_knee_without_gain(self):
        path = [_point(0, 1.0), _point(2, 1.0)]
        assert select_by_knee(path) == 0
        assert select_by_knee([_point(1, 1.0, converged=False)]) is None


class TestRegularizationPath:

    def setup_method(self):
        np.random.seed(3)
        self.n = 200
        self.A = np.random.randn(self.n, 6)
        self.w = np.ones(self.n)
        self.y_reg = 3 * self.A[:, 0] - 2 * self.A[:, 1] + 0.1 * np.random.randn(self.n)
        self.y_bin = (self.A[:, 0] - self.A[:, 1] + 0.2 * np.random.randn(self.n) > 0).astype(int)
        self.names = [f'c{i}' for i in range(6)]

    def test_path_starts_empty_and_grows(self):
        path = fit_regularization_path(self.A, self.y_reg, self.w, Family.REGRESSION, n_alphas=20)
        assert len(path) == 20
        assert path[0].n_nonzero() <= 1
        assert path[-1].n_nonzero() >= 2
        assert path[-1].deviance < path[0].deviance
        alphas = [p.alpha for p in path]
        assert alphas == sorted(alphas, reverse=True)

    def test_regression_recovers_signal(self):
        fit = score_linear(self.A, self.y_reg, self.w, Family.REGRESSION, self.names, n_rule_columns=6)
        assert not fit.degraded
        assert set(fit.model.nonzero_columns()) >= {0, 1}
        assert fit.model.coef_[0, 0] == pytest.approx(3, abs=0.2)
        assert fit.model.coef_[0, 1] == pytest.approx(-2, abs=0.2)

    def test_max_rules_bound(self):
        for max_rules in [0, 1, 2]:
            fit = score_linear(self.A, self.y_bin, self.w, Family.BINOMIAL, self.names, n_rule_columns=6,
                               max_rules=max_rules, n_classes=2)
            assert fit.model.n_nonzero_rules <= max_rules

    def test_binomial_deviance_matches_metrics(self):
        fit = score_linear(self.A, self.y_bin, self.w, Family.BINOMIAL, self.names, n_rule_columns=6,
                           n_classes=2)
        preds = fit.model.predictions_for_deviance(self.A)
        metrics = make_metrics(Family.BINOMIAL, self.y_bin, preds, self.w)
        assert metrics.deviance == pytest.approx(fit.deviance)
        assert metrics['accuracy'] > 0.85

    def test_multinomial(self):
        y = np.digitize(self.A[:, 0], [-0.5, 0.5])
        fit = score_linear(self.A, y, self.w, Family.MULTINOMIAL, self.names, n_rule_columns=6, n_classes=3)
        assert fit.model.coef_.shape == (3, 6)
        proba = fit.model.predict_proba(self.A)
        np.testing.assert_allclose(proba.sum(axis=1), 1)

    def test_degraded_fit_falls_back_to_intercept(self):
        with pytest.warns(DegradedFitWarning):
            fit = score_linear(self.A, self.y_bin, self.w, Family.BINOMIAL, self.names, n_rule_columns=6,
                               n_classes=2, max_iter=1)
        assert fit.degraded
        assert len(fit.model.nonzero_columns()) == 0
        np.testing.assert_allclose(fit.model.predict_proba(self.A)[:, 1], self.y_bin.mean())

    def test_no_columns(self):
        fit = score_linear(np.zeros((self.n, 0)), self.y_reg, self.w, Family.REGRESSION, [], n_rule_columns=0)
        assert fit.model.predict(np.zeros((3, 0))) == pytest.approx(np.full(3, self.y_reg.mean()))

    def test_logistic_solver_without_deprecated_arguments(self):
        with warnings.catch_warnings():
            warnings.simplefilter('error', FutureWarning)
            fit = score_linear(self.A, self.y_bin, self.w, Family.BINOMIAL, self.names, n_rule_columns=6,
                               n_classes=2, n_alphas=5)
        assert len(fit.path) == 5

    def test_cancelled(self):
        class Cancelled:
            def is_set(self):
                return True

        with pytest.raises(TrainingCancelled):
            score_linear(self.A, self.y_reg, self.w, Family.REGRESSION, self.names, n_rule_columns=6,
                         cancel_event=Cancelled())


def test_intercept_only_model():
    y = np.array([0, 0, 0, 1])
    model = SparseLinearModel.intercept_only(Family.BINOMIAL, y, np.ones(4), 2, ['a'], 1)
    np.testing.assert_allclose(model.predict_proba(np.zeros((2, 1)))[:, 1], 0.25)
    assert mean_residual_deviance(Family.REGRESSION, np.array([1.0, 3.0]), np.array([2.0, 2.0])) == 1.0
