"""Linear model of tree-based decision rules based on the rulefit algorithm from Friedman and Popescu.

The algorithm can be used for predicting an output vector y given an input frame X. In the first step one tree
ensemble is grown per depth between min_rule_length and max_rule_length. The trees are then used to form rules,
where the path to each node in each tree forms one rule. A rule is a binary decision if an observation is in a given
node, which is dependent on the input features that were used in the splits. The rules, deduplicated across trees,
together with the original input features are then input in an L1-regularized linear model. The model is solved
along a regularization path and the point used is chosen either to keep at most max_num_rules rules or where adding
terms stops improving the deviance.
"""
import logging
import uuid

import numpy as np
import pandas as pd
from joblib import hash as joblib_hash
from sklearn.base import BaseEstimator, ClassifierMixin, RegressorMixin, TransformerMixin
from sklearn.utils.validation import _check_sample_weight, check_is_fitted

from sparserules.rule_set.rule_ensemble import RuleEnsemble
from sparserules.rule_set.rule_set import RuleSet
from sparserules.util.arguments import check_fit_arguments, check_rulefit_params
from sparserules.util.extract import check_cancelled, extract_rules, train_tree_ensembles
from sparserules.util.metrics import Family, ModelMetrics, infer_family, make_metrics
from sparserules.util.score import LinearFit, score_linear
from sparserules.util.transforms import ActivationLayout, build_activation_matrix

logger = logging.getLogger(__name__)


def _frame_id(X) -> str:
    """Id of a frame from its shape, column names and row index, without hashing the values."""
    if isinstance(X, pd.DataFrame):
        return joblib_hash((X.shape, [str(c) for c in X.columns], X.index))
    X = np.asarray(X)
    return joblib_hash((X.shape, X.dtype.str))


class RuleFit(TransformerMixin, RuleSet, BaseEstimator):
    """Rulefit class. Rather than using this class directly, should use RuleFitRegressor or RuleFitClassifier

    Parameters
    ----------
    algorithm:      Tree ensemble used to generate rules: 'drf' (random forest), 'gbm' (gradient boosting)
                    or 'auto' (random forest).
    min_rule_length: Shortest rule kept, counted in split conditions.
    max_rule_length: Longest rule kept. Trees are grown to every depth from min_rule_length to max_rule_length.
    max_num_rules:  Maximal number of rules with a nonzero coefficient. -1 selects the number of rules
                    automatically, by diminishing returns in deviance along the regularization path.
    model_type:     'rules_and_linear': rules and linear terms; 'rules': rules only; 'linear': linear terms only
    rule_generation_ntrees: Number of trees grown per depth.
    max_candidate_rules: Extraction is aborted with RuleLimitError if the trees produce more candidate
                    rules (before deduplication) than this.
    n_alphas:       Number of points on the regularization path.
    eps:            Ratio of the weakest to the strongest regularization on the path.
    knee_fraction:  With max_num_rules=-1, the path is followed until the first step whose deviance gain
                    per added term is below this fraction of the best gain.
    max_iter, tol:  Linear solver limits.
    n_jobs:         Parallelism (joblib) of tree training, rule extraction and transforms.
    random_state:   Integer to initialise random objects and provide repeatability.
    verbose:        Show progress over tree depths.

    Attributes
    ----------
    rule_ensemble_: RuleEnsemble
        The deduplicated rules, in activation column order
    layout_: ActivationLayout
        Names and order of the activation columns
    linear_model_: SparseLinearModel
        The selected sparse linear model over the activation columns
    rule_importance_: pandas.DataFrame
        Rules with a nonzero coefficient and their coefficient, support and importance
    training_metrics_: ModelMetrics
    degraded_fit_: bool
        True if the linear solver never converged and an intercept-only model is used
    """

    def __init__(self,
                 algorithm='auto',
                 min_rule_length=3,
                 max_rule_length=3,
                 max_num_rules=-1,
                 model_type='rules_and_linear',
                 rule_generation_ntrees=50,
                 max_candidate_rules=500000,
                 n_alphas=50,
                 eps=1e-3,
                 knee_fraction=0.01,
                 max_iter=1000,
                 tol=1e-4,
                 n_jobs=None,
                 random_state=None,
                 verbose=False):
        self.algorithm = algorithm
        self.min_rule_length = min_rule_length
        self.max_rule_length = max_rule_length
        self.max_num_rules = max_num_rules
        self.model_type = model_type
        self.rule_generation_ntrees = rule_generation_ntrees
        self.max_candidate_rules = max_candidate_rules
        self.n_alphas = n_alphas
        self.eps = eps
        self.knee_fraction = knee_fraction
        self.max_iter = max_iter
        self.tol = tol
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = verbose
        self._init_prediction_task()  # decides between regressor and classifier

    def _init_prediction_task(self):
        """
        RuleFitRegressor and RuleFitClassifier override this method
        to alter the prediction task. When using this class directly,
        it is equivalent to RuleFitRegressor
        """
        self.prediction_task = 'regression'

    def fit(self, X, y, sample_weight=None, feature_names=None, cancel_event=None):
        """Fit and estimate linear combination of rule ensemble

        Parameters
        ----------
        X : pandas.DataFrame or array-like of shape (n_samples, n_features)
            Non-numeric and pandas categorical columns are treated as categorical features.
        y : array-like of shape (n_samples,)
        sample_weight : array-like of shape (n_samples,), optional
        feature_names : list of str, optional
        cancel_event : object with an ``is_set()`` method, e.g. threading.Event, optional
            Checked between training stages; when set, fit raises TrainingCancelled.
        """
        algorithm, model_type = check_rulefit_params(self)
        X_encoded, y, sample_weight = check_fit_arguments(self, X, y, feature_names, sample_weight)
        n_classes = len(self.classes_) if self.prediction_task == 'classification' else None
        self.family_ = infer_family(n_classes)
        self.algorithm_ = algorithm
        self.model_type_ = model_type
        self.model_id_ = uuid.uuid4().hex
        self.warnings_ = []

        if model_type.has_rules:
            self.rule_ensemble_ = self._extract_rules(X_encoded, y, sample_weight, cancel_event)
        else:
            self.rule_ensemble_ = RuleEnsemble()
        self.layout_ = ActivationLayout.from_ensemble(self.rule_ensemble_, model_type, self.schema_)

        check_cancelled(cancel_event, 'activation matrix construction')
        A = build_activation_matrix(X_encoded, self.rule_ensemble_, self.layout_, self.schema_, n_jobs=self.n_jobs)
        self.column_std_ = A.std(axis=0)
        self.column_support_ = A.mean(axis=0)

        linear_fit = self._score_rules(A, y, sample_weight, cancel_event)
        self.linear_model_ = linear_fit.model
        self.path_ = linear_fit.path
        self.degraded_fit_ = linear_fit.degraded
        if linear_fit.degraded:
            self.warnings_.append('linear solver did not converge on the regularization path, '
                                  'using an intercept-only model')
        self.coef_ = self.linear_model_.coef_
        self.intercept_ = self.linear_model_.intercept_
        self.training_deviance_ = linear_fit.deviance

        self.rule_importance_ = self._get_terms(include_linear=False, exclude_zero_coef=True) \
            .sort_values('importance', ascending=False, kind='mergesort') \
            .drop(columns='type') \
            .reset_index(drop=True)
        self.training_metrics_ = make_metrics(self.family_, y, self.linear_model_.predictions_for_deviance(A),
                                              sample_weight, model_id=self.model_id_, frame_id=_frame_id(X))
        self.complexity_ = self._get_complexity()
        logger.info('fitted %s model %s: %d rules, %d with nonzero coefficients, training deviance %.5g',
                    self.family_.value, self.model_id_, len(self.rule_ensemble_),
                    self.linear_model_.n_nonzero_rules, self.training_deviance_)
        return self

    def _extract_rules(self, X, y, sample_weight, cancel_event=None) -> RuleEnsemble:
        depths = list(range(self.min_rule_length, self.max_rule_length + 1))
        trees = train_tree_ensembles(X, y, sample_weight,
                                     algorithm=self.algorithm_,
                                     family=self.family_,
                                     depths=depths,
                                     n_estimators=self.rule_generation_ntrees,
                                     schema=self.schema_,
                                     random_state=self.random_state,
                                     n_jobs=self.n_jobs,
                                     cancel_event=cancel_event,
                                     verbose=self.verbose)
        check_cancelled(cancel_event, 'rule extraction')
        return extract_rules(trees, self.min_rule_length, self.max_rule_length,
                             max_candidates=self.max_candidate_rules, n_jobs=self.n_jobs)

    def _score_rules(self, A, y, sample_weight, cancel_event=None) -> LinearFit:
        return score_linear(A, y, sample_weight, self.family_,
                            column_names=self.layout_.names,
                            n_rule_columns=self.layout_.n_rules,
                            max_rules=self.max_num_rules,
                            knee_fraction=self.knee_fraction,
                            n_classes=len(self.classes_) if self.family_.is_classification else None,
                            n_alphas=self.n_alphas,
                            eps=self.eps,
                            max_iter=self.max_iter,
                            tol=self.tol,
                            random_state=self.random_state,
                            cancel_event=cancel_event)

    def transform(self, X):
        """Transform dataset into its activation matrix.

        Parameters
        ----------
        X : pandas.DataFrame or array-like matrix, shape=(n_samples, n_features)

        Returns
        -------
        X_transformed: matrix, shape=(n_samples, n_rules + n_linear_terms)
            One 0/1 column per rule, in rule ensemble order, followed by the linear terms.

        Raises
        ------
        SchemaError
            If X lacks a column used by a rule or a linear term.
        """
        check_is_fitted(self, ['rule_ensemble_', 'layout_', 'schema_'])
        required = self.layout_.required_features(self.rule_ensemble_)
        X_encoded = self.schema_.encode(X, required=required)
        return build_activation_matrix(X_encoded, self.rule_ensemble_, self.layout_, self.schema_,
                                       n_jobs=self.n_jobs)

    def decision_function(self, X):
        check_is_fitted(self, 'linear_model_')
        eta = self.linear_model_.decision_function(self.transform(X))
        return eta[:, 0] if eta.shape[1] == 1 else eta

    def predict(self, X):
        '''Predict. For regression returns continuous output.
        For classification, returns discrete output.
        '''
        check_is_fitted(self, 'linear_model_')
        A = self.transform(X)
        if self.prediction_task == 'regression':
            return self.linear_model_.predict(A)
        return self.classes_[self.linear_model_.predict(A)]

    def score_frame(self, X, y=None, sample_weight=None):
        """Score a frame with the fitted model.

        Returns
        -------
        predictions : pandas.DataFrame
            Column 'predict', plus one probability column per class for classifiers.
        metrics : ModelMetrics or None
            Metrics on (X, y), attached to this model and frame; None if y is not given.
        """
        check_is_fitted(self, 'linear_model_')
        A = self.transform(X)
        index = X.index if isinstance(X, pd.DataFrame) else None
        if self.family_.is_classification:
            proba = self.linear_model_.predict_proba(A)
            predictions = pd.DataFrame({'predict': self.classes_[np.argmax(proba, axis=1)]}, index=index)
            for k, label in enumerate(self.classes_):
                predictions[str(label)] = proba[:, k]
        else:
            predictions = pd.DataFrame({'predict': self.linear_model_.predict(A)}, index=index)

        if y is None:
            return predictions, None
        y = np.asarray(y.values if isinstance(y, (pd.Series, pd.DataFrame)) else y).ravel()
        if self.family_.is_classification:
            unknown = np.setdiff1d(y, self.classes_)
            if len(unknown) > 0:
                raise ValueError(f'y contains labels not seen during training: {unknown}')
            y = np.searchsorted(self.classes_, y)
        else:
            y = y.astype(float)
        sample_weight = _check_sample_weight(sample_weight, A)
        linear_metrics = make_metrics(self.family_, y, self.linear_model_.predictions_for_deviance(A), sample_weight)
        return predictions, self._clone_metrics(linear_metrics, X)

    def _clone_metrics(self, metrics: ModelMetrics, X) -> ModelMetrics:
        return metrics.clone(model_id=self.model_id_, frame_id=_frame_id(X))

    def _get_terms(self, include_linear=True, exclude_zero_coef=False) -> pd.DataFrame:
        n_rules = self.layout_.n_rules
        coef = self.linear_model_.coef_
        rules = self.rule_ensemble_.rules
        output_rules = []
        for j, name in enumerate(self.layout_.names):
            is_rule = j < n_rules
            if not is_rule and not include_linear:
                continue
            if is_rule:
                description = rules[j].describe(self.feature_names_, self.schema_.levels, self.schema_.na_features)
                support = self.column_support_[j]
            else:
                description = name
                support = 1.0
            for k in range(coef.shape[0]):
                if exclude_zero_coef and coef[k, j] == 0:
                    continue
                row = (name, description, 'rule' if is_rule else 'linear', coef[k, j], support,
                       abs(coef[k, j]) * self.column_std_[j])
                if self.family_ is Family.MULTINOMIAL:
                    row = row + (self.classes_[k],)
                output_rules.append(row)
        columns = ['rule_id', 'rule', 'type', 'coefficient', 'support', 'importance']
        if self.family_ is Family.MULTINOMIAL:
            columns.append('class')
        return pd.DataFrame(output_rules, columns=columns)

    def get_rules(self, exclude_zero_coef=False):
        """Return the estimated rules and linear terms

        Parameters
        ----------
        exclude_zero_coef: If True, returns only the terms with an estimated
                           coefficient not equal to zero.

        Returns
        -------
        rules: pandas.DataFrame with the terms. Column 'rule' describes the rule, 'type' tells rules from
               linear terms, 'coefficient' holds the coefficients, 'support' the support of the rule in the
               training data set (X) and 'importance' the coefficient times the standard deviation of the term
        """
        check_is_fitted(self, 'linear_model_')
        return self._get_terms(include_linear=True, exclude_zero_coef=exclude_zero_coef)

    def visualize(self, decimals=2):
        rules = self.get_rules(exclude_zero_coef=True)
        rules = rules.sort_values('support', ascending=False, kind='mergesort')
        pd.set_option('display.max_colwidth', None)
        return rules[['rule', 'coefficient']].round(decimals)

    def __str__(self):
        if not hasattr(self, 'linear_model_'):
            return self.__class__.__name__ + '()'
        return 'RuleFit:\n' + self.visualize().to_string(index=False) + '\n'


class RuleFitRegressor(RegressorMixin, RuleFit):
    def _init_prediction_task(self):
        self.prediction_task = 'regression'


class RuleFitClassifier(ClassifierMixin, RuleFit):
    def _init_prediction_task(self):
        self.prediction_task = 'classification'

    def predict_proba(self, X):
        check_is_fitted(self, 'linear_model_')
        return self.linear_model_.predict_proba(self.transform(X))
