from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

NUMERIC = 'numeric'
CATEGORICAL = 'categorical'


@dataclass(frozen=True)
class Condition:
    """A single split test copied from a tree node.

    Parameters
    ----------
    feature_index : int
        Column of the encoded frame the test reads.
    operator : str
        ``'<='`` or ``'>'`` for numeric tests, ``'in'`` for categorical ones.
    threshold : float, optional
        Split value of a numeric test.
    categories : tuple of int
        Level codes on the true side of a categorical test.
    na_true : bool
        Whether a missing value satisfies the test. This is the direction
        the source tree sent missing values at this split.
    """
    feature_index: int
    operator: str
    threshold: Optional[float] = None
    categories: Tuple[int, ...] = ()
    na_true: bool = False

    def __post_init__(self):
        if self.operator not in ('<=', '>', 'in'):
            raise ValueError(f'unknown operator {self.operator!r}')
        if self.operator != 'in' and self.threshold is None:
            raise ValueError('numeric conditions need a threshold')
        object.__setattr__(self, 'categories', tuple(sorted(int(c) for c in self.categories)))

    @property
    def kind(self) -> str:
        return CATEGORICAL if self.operator == 'in' else NUMERIC

    @property
    def sort_key(self) -> tuple:
        threshold = float('-inf') if self.threshold is None else float(self.threshold)
        return self.feature_index, threshold, self.operator, self.categories, self.na_true

    def evaluate(self, X: np.ndarray) -> np.ndarray:
        """Boolean mask of the rows of the encoded matrix X that satisfy the test."""
        values = X[:, self.feature_index]
        missing = np.isnan(values)
        if self.operator == '<=':
            hit = values <= self.threshold
        elif self.operator == '>':
            hit = values > self.threshold
        else:
            hit = np.isin(values, self.categories)
        return np.where(missing, self.na_true, hit)

    def describe(self, feature_names: Sequence[str], levels: Optional[Dict[int, List[str]]] = None,
                 show_na: bool = False) -> str:
        name = feature_names[self.feature_index]
        if self.operator == 'in':
            feature_levels = (levels or {}).get(self.feature_index)
            if feature_levels is None:
                values = [str(c) for c in self.categories]
            else:
                values = [str(feature_levels[c]) for c in self.categories]
            text = f"{name} in {{{', '.join(values)}}}"
        else:
            text = f'{name} {self.operator} {np.round(self.threshold, decimals=5)}'
        if show_na and self.na_true:
            text = f'({text} or {name} is NA)'
        return text

    def to_dict(self) -> dict:
        return {
            'feature_index': int(self.feature_index),
            'operator': self.operator,
            'threshold': None if self.threshold is None else float(self.threshold),
            'categories': list(self.categories),
            'na_true': bool(self.na_true),
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'Condition':
        return cls(feature_index=d['feature_index'],
                   operator=d['operator'],
                   threshold=d.get('threshold'),
                   categories=tuple(d.get('categories', ())),
                   na_true=d.get('na_true', False))


@dataclass(frozen=True, eq=False)
class Rule:
    """An AND of conditions along one root-to-node path of a tree.

    Two rules are equal when their canonical signatures match, i.e. when they
    hold the same conditions regardless of the order the tree tested them in.
    ``rule_id`` names the node the rule was first extracted from and takes no
    part in equality.
    """
    conditions: Tuple[Condition, ...]
    rule_id: str = ''
    signature: tuple = field(init=False, repr=False)

    def __post_init__(self):
        conditions = tuple(self.conditions)
        object.__setattr__(self, 'conditions', conditions)
        object.__setattr__(self, 'signature', tuple(sorted(c.sort_key for c in conditions)))

    def __eq__(self, other):
        if not isinstance(other, Rule):
            return NotImplemented
        return self.signature == other.signature

    def __hash__(self):
        return hash(self.signature)

    def __len__(self):
        return len(self.conditions)

    @property
    def length(self) -> int:
        return len(self.conditions)

    @property
    def features(self) -> List[int]:
        return sorted(set(c.feature_index for c in self.conditions))

    def canonical_conditions(self) -> List[Condition]:
        return sorted(self.conditions, key=lambda c: c.sort_key)

    def evaluate(self, X: np.ndarray) -> np.ndarray:
        fired = np.ones(X.shape[0], dtype=bool)
        for condition in self.conditions:
            fired &= condition.evaluate(X)
        return fired

    def describe(self, feature_names: Sequence[str], levels: Optional[Dict[int, List[str]]] = None,
                 na_features: Iterable[int] = ()) -> str:
        na_features = set(na_features)
        return ' and '.join(c.describe(feature_names, levels, show_na=c.feature_index in na_features)
                            for c in self.canonical_conditions())

    def to_dict(self) -> dict:
        return {'rule_id': self.rule_id, 'conditions': [c.to_dict() for c in self.conditions]}

    @classmethod
    def from_dict(cls, d: dict) -> 'Rule':
        return cls(conditions=tuple(Condition.from_dict(c) for c in d['conditions']),
                   rule_id=d.get('rule_id', ''))

    def __repr__(self):
        return ' and '.join(f'X_{c.feature_index} {c.operator} '
                            f'{c.categories if c.operator == "in" else c.threshold}'
                            for c in self.canonical_conditions())
