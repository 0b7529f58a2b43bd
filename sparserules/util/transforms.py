'''Frame encoding and the rule activation transform shared by training and scoring
'''
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed, effective_n_jobs

from sparserules.util.errors import SchemaError
from sparserules.util.rule import Rule, NUMERIC, CATEGORICAL

LINEAR_PREFIX = 'linear.'


class FrameSchema:
    """Column names, kinds and category levels of the training frame.

    The schema turns any frame into the numeric matrix the trees were trained
    on. Numeric columns are rounded through float32, the precision tree split
    thresholds are compared at. Categorical columns become the code of their
    training level; missing values and levels never seen in training become NaN.
    """

    def __init__(self):
        self.feature_names = []
        self.kinds = []
        self.levels = {}
        self.means = None
        self.has_missing = None

    def fit(self, X, feature_names=None) -> 'FrameSchema':
        frame = self._to_frame(X, feature_names)
        self.feature_names = [str(c) for c in frame.columns]
        if len(set(self.feature_names)) != len(self.feature_names):
            raise ValueError('feature names must be unique')
        self.kinds = []
        self.levels = {}
        for i, name in enumerate(frame.columns):
            column = frame[name]
            if pd.api.types.is_numeric_dtype(column.dtype) and not isinstance(column.dtype, pd.CategoricalDtype):
                self.kinds.append(NUMERIC)
            else:
                self.kinds.append(CATEGORICAL)
                if isinstance(column.dtype, pd.CategoricalDtype):
                    self.levels[i] = list(column.cat.categories)
                else:
                    self.levels[i] = sorted(column.dropna().unique().tolist(), key=str)
        X_encoded = self.encode(frame)
        self.has_missing = np.isnan(X_encoded).any(axis=0)
        self.means = np.zeros(len(self.feature_names))
        for i in range(len(self.feature_names)):
            observed = X_encoded[~np.isnan(X_encoded[:, i]), i]
            if self.kinds[i] == NUMERIC and observed.size > 0:
                self.means[i] = observed.mean()
        return self

    def __len__(self):
        return len(self.feature_names)

    def categorical_levels(self, feature_index: int) -> Optional[list]:
        return self.levels.get(feature_index)

    @property
    def na_features(self) -> List[int]:
        return [i for i, missing in enumerate(self.has_missing) if missing]

    def _to_frame(self, X, feature_names=None) -> pd.DataFrame:
        if isinstance(X, pd.DataFrame):
            if feature_names is not None:
                X = X.set_axis(list(feature_names), axis=1)
            return X
        X = np.asarray(X)
        if X.ndim != 2:
            raise ValueError(f'Expected 2D input, got an array of {X.ndim} dimensions')
        if feature_names is None:
            feature_names = self.feature_names if len(self.feature_names) == X.shape[1] \
                else [f'X{i}' for i in range(X.shape[1])]
        if len(feature_names) != X.shape[1]:
            raise ValueError('feature_names should be same size as X.shape[1]')
        return pd.DataFrame(X, columns=list(feature_names))

    def encode(self, X, required: Optional[Sequence[int]] = None) -> np.ndarray:
        """Encode a frame into the training feature space.

        Parameters
        ----------
        X : pandas.DataFrame (columns matched by name) or 2-D array (columns matched by position)
        required : feature indices that must be present, defaults to all features.
            Absent features that are not required are filled with NaN.
        """
        if not isinstance(X, pd.DataFrame) and np.ndim(X) == 2 and np.shape(X)[1] != len(self.feature_names):
            raise SchemaError([], f'X has {np.shape(X)[1]} columns, the model was trained on '
                                  f'{len(self.feature_names)}')
        frame = self._to_frame(X)
        required = range(len(self.feature_names)) if required is None else required
        present = set(str(c) for c in frame.columns)
        missing = [self.feature_names[i] for i in required if self.feature_names[i] not in present]
        if len(missing) > 0:
            raise SchemaError(missing)
        frame = frame.rename(columns=str)

        X_encoded = np.full((frame.shape[0], len(self.feature_names)), np.nan)
        for i, name in enumerate(self.feature_names):
            if name not in present:
                continue
            column = frame[name]
            if self.kinds[i] == NUMERIC:
                X_encoded[:, i] = pd.to_numeric(column).to_numpy(dtype=np.float64, na_value=np.nan)
            else:
                codes = {level: code for code, level in enumerate(self.levels[i])}
                X_encoded[:, i] = column.astype(object).map(codes).to_numpy(dtype=np.float64, na_value=np.nan)
        return X_encoded.astype(np.float32).astype(np.float64)


@dataclass(frozen=True)
class ActivationLayout:
    """Ordered columns of the activation matrix.

    Rule indicator columns come first, in ensemble order, followed by the linear
    terms in frame order. ``linear_terms`` holds ``(feature_index, level_code)``
    pairs, the level code being None for numeric features.
    """
    rule_columns: Tuple[str, ...]
    linear_columns: Tuple[str, ...]
    linear_terms: Tuple[Tuple[int, Optional[int]], ...]

    @classmethod
    def from_ensemble(cls, ensemble, model_type, schema: FrameSchema) -> 'ActivationLayout':
        rule_columns = ()
        if model_type.has_rules:
            rule_columns = tuple(rule.rule_id or f'rule_{i}' for i, rule in enumerate(ensemble))
        linear_columns, linear_terms = [], []
        if model_type.has_linear:
            for i, name in enumerate(schema.feature_names):
                if schema.kinds[i] == NUMERIC:
                    linear_columns.append(LINEAR_PREFIX + name)
                    linear_terms.append((i, None))
                else:
                    for code, level in enumerate(schema.levels[i]):
                        linear_columns.append(f'{LINEAR_PREFIX}{name}.{level}')
                        linear_terms.append((i, code))
        return cls(rule_columns, tuple(linear_columns), tuple(linear_terms))

    def __len__(self):
        return len(self.rule_columns) + len(self.linear_columns)

    @property
    def n_rules(self) -> int:
        return len(self.rule_columns)

    @property
    def names(self) -> List[str]:
        return list(self.rule_columns) + list(self.linear_columns)

    def required_features(self, ensemble) -> List[int]:
        """Feature indices a frame must provide to be transformed with this layout."""
        features = set(feature for feature, _ in self.linear_terms)
        if self.n_rules > 0:
            for rule in ensemble:
                features.update(rule.features)
        return sorted(features)


def _activation_batch(X, rules: List[Rule], linear_terms, means) -> np.ndarray:
    out = np.zeros((X.shape[0], len(rules) + len(linear_terms)))
    for j, rule in enumerate(rules):
        out[:, j] = rule.evaluate(X)
    for k, (feature, code) in enumerate(linear_terms):
        values = X[:, feature]
        if code is None:
            out[:, len(rules) + k] = np.where(np.isnan(values), means[feature], values)
        else:
            out[:, len(rules) + k] = values == code
    return out


def build_activation_matrix(X_encoded: np.ndarray, ensemble, layout: ActivationLayout, schema: FrameSchema,
                            n_jobs=None, batch_size: int = 10000) -> np.ndarray:
    """Map encoded rows to the activation matrix described by layout.

    Each row is transformed independently of all others, so row batches are
    processed in parallel when n_jobs allows it.
    """
    rules = list(ensemble)[:layout.n_rules]
    if len(rules) != layout.n_rules:
        raise ValueError(f'layout has {layout.n_rules} rule columns but the ensemble holds {len(rules)} rules')
    n_samples = X_encoded.shape[0]
    if effective_n_jobs(n_jobs) == 1 or n_samples <= batch_size:
        return _activation_batch(X_encoded, rules, layout.linear_terms, schema.means)
    batches = Parallel(n_jobs=n_jobs, prefer='threads')(
        delayed(_activation_batch)(X_encoded[start:start + batch_size], rules, layout.linear_terms, schema.means)
        for start in range(0, n_samples, batch_size))
    return np.vstack(batches)
