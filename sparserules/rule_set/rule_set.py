import numpy as np
from sklearn.utils.validation import check_is_fitted


class RuleSet:

    def _extract_rules(self, X, y, sample_weight, cancel_event=None):
        pass

    def _score_rules(self, A, y, sample_weight, cancel_event=None):
        pass

    def _eval_weighted_rule_sum(self, X) -> np.ndarray:
        """Contribution of the rule terms to the linear predictor, shape (n_samples, n_targets)."""
        check_is_fitted(self, ['rule_ensemble_', 'layout_', 'linear_model_'])
        A = self.transform(X)
        n_rules = self.layout_.n_rules
        return A[:, :n_rules] @ self.linear_model_.coef_[:, :n_rules].T

    def _get_complexity(self):
        check_is_fitted(self, ['rule_ensemble_', 'linear_model_'])
        nonzero = self.linear_model_.nonzero_columns()
        n_rules = self.layout_.n_rules
        rules = self.rule_ensemble_.rules
        return sum(len(rules[j]) for j in nonzero if j < n_rules) + int(np.sum(nonzero >= n_rules))
