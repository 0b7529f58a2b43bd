import numpy as np
import pandas as pd
import pytest

from sparserules.rule_set.rule_ensemble import RuleEnsemble
from sparserules.util.arguments import ModelType
from sparserules.util.errors import SchemaError
from sparserules.util.rule import Condition, Rule, CATEGORICAL, NUMERIC
from sparserules.util.transforms import ActivationLayout, FrameSchema, build_activation_matrix


class TestFrameSchema:

    def setup_method(self):
        self.frame = pd.DataFrame({
            'age': [20.0, 35.0, np.nan, 50.0],
            'color': ['red', 'blue', None, 'red'],
            'size': pd.Categorical(['S', 'L', 'M', 'S'], categories=['S', 'M', 'L']),
        })
        self.schema = FrameSchema().fit(self.frame)

    def test_kinds_and_levels(self):
        assert self.schema.feature_names == ['age', 'color', 'size']
        assert self.schema.kinds == [NUMERIC, CATEGORICAL, CATEGORICAL]
        assert self.schema.levels == {1: ['blue', 'red'], 2: ['S', 'M', 'L']}
        assert self.schema.na_features == [0, 1]
        assert self.schema.means[0] == pytest.approx(35.0)

    def test_encode(self):
        X = self.schema.encode(self.frame)
        np.testing.assert_array_equal(X[:, 1], [1, 0, np.nan, 1])
        np.testing.assert_array_equal(X[:, 2], [0, 2, 1, 0])
        assert np.isnan(X[2, 0])

    def test_unseen_level_is_missing(self):
        frame = self.frame.copy()
        frame['color'] = ['green', 'blue', 'red', 'red']
        X = self.schema.encode(frame)
        assert np.isnan(X[0, 1])
        assert X[1, 1] == 0

    def test_columns_matched_by_name(self):
        X = self.schema.encode(self.frame[['size', 'age', 'color']])
        np.testing.assert_array_equal(X, self.schema.encode(self.frame))

    def test_missing_required_column(self):
        with pytest.raises(SchemaError) as excinfo:
            self.schema.encode(self.frame.drop(columns='color'))
        assert excinfo.value.missing == ['color']
        # columns that are not required may be absent
        X = self.schema.encode(self.frame.drop(columns='color'), required=[0])
        assert np.all(np.isnan(X[:, 1]))

    def test_array_width_mismatch(self):
        schema = FrameSchema().fit(np.zeros((3, 2)))
        assert schema.feature_names == ['X0', 'X1']
        with pytest.raises(SchemaError):
            schema.encode(np.zeros((3, 3)))

    def test_values_rounded_to_float32(self):
        schema = FrameSchema().fit(np.array([[0.1], [0.2]]))
        X = schema.encode(np.array([[0.1], [0.2]]))
        assert X[0, 0] == float(np.float32(0.1))


class TestActivation:

    def setup_method(self):
        self.frame = pd.DataFrame({'x': [0.0, 1.0, 2.0, np.nan],
                                   'color': ['red', 'blue', 'red', 'green']})
        self.schema = FrameSchema().fit(self.frame)
        self.ensemble = RuleEnsemble([
            Rule((Condition(0, '<=', threshold=1.5, na_true=True),), rule_id='M1T0N1'),
            Rule((Condition(1, 'in', categories=(2,)), Condition(0, '>', threshold=0.5)), rule_id='M2T0N4'),
        ])

    def test_layout(self):
        layout = ActivationLayout.from_ensemble(self.ensemble, ModelType.RULES_AND_LINEAR, self.schema)
        assert layout.names == ['M1T0N1', 'M2T0N4', 'linear.x', 'linear.color.blue', 'linear.color.green',
                                'linear.color.red']
        assert layout.n_rules == 2
        assert len(ActivationLayout.from_ensemble(self.ensemble, ModelType.RULES, self.schema)) == 2
        linear = ActivationLayout.from_ensemble(RuleEnsemble(), ModelType.LINEAR, self.schema)
        assert linear.n_rules == 0
        assert len(linear) == 4

    def test_activation_matrix(self):
        layout = ActivationLayout.from_ensemble(self.ensemble, ModelType.RULES_AND_LINEAR, self.schema)
        A = build_activation_matrix(self.schema.encode(self.frame), self.ensemble, layout, self.schema)
        expected = np.array([
            [1, 0, 0.0, 0, 0, 1],
            [1, 0, 1.0, 1, 0, 0],
            [0, 1, 2.0, 0, 0, 1],
            [1, 0, 1.0, 0, 1, 0],  # missing x imputed with the training mean
        ])
        np.testing.assert_allclose(A, expected)

    def test_rows_are_independent(self):
        layout = ActivationLayout.from_ensemble(self.ensemble, ModelType.RULES_AND_LINEAR, self.schema)
        X = self.schema.encode(self.frame)
        A = build_activation_matrix(X, self.ensemble, layout, self.schema)
        A_single = np.vstack([build_activation_matrix(X[i:i + 1], self.ensemble, layout, self.schema)
                              for i in range(X.shape[0])])
        np.testing.assert_array_equal(A, A_single)

    def test_batched_matches_single_batch(self):
        np.random.seed(0)
        frame = pd.DataFrame({'x': np.random.randn(50), 'color': np.random.choice(['red', 'blue'], 50)})
        layout = ActivationLayout.from_ensemble(self.ensemble, ModelType.RULES_AND_LINEAR, self.schema)
        X = self.schema.encode(frame)
        A = build_activation_matrix(X, self.ensemble, layout, self.schema)
        A_batched = build_activation_matrix(X, self.ensemble, layout, self.schema, n_jobs=2, batch_size=7)
        np.testing.assert_array_equal(A, A_batched)

    def test_required_features(self):
        rules_only = ActivationLayout.from_ensemble(self.ensemble, ModelType.RULES, self.schema)
        assert rules_only.required_features(self.ensemble) == [0, 1]
        first_only = RuleEnsemble([self.ensemble[0]])
        layout = ActivationLayout.from_ensemble(first_only, ModelType.RULES, self.schema)
        assert layout.required_features(first_only) == [0]
