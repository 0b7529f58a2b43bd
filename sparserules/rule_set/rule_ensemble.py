from collections import OrderedDict
from typing import Iterable, Iterator, List, Optional

import numpy as np

from sparserules.util.errors import RuleLimitError
from sparserules.util.rule import Rule


class RuleEnsemble:
    """Deduplicated, insertion-ordered collection of decision rules.

    Rules are keyed by their canonical signature. The first rule seen for a
    signature is kept and later duplicates are dropped, so the position of
    every rule (and hence its activation column) never changes once added.

    Parameters
    ----------
    rules : iterable of Rule, optional
        Candidate rules, folded in order.
    """

    def __init__(self, rules: Iterable[Rule] = ()):
        self._rules = OrderedDict()
        self._positions = {}
        self.n_candidates = 0
        for rule in rules:
            self.add(rule)

    def add(self, rule: Rule) -> bool:
        """Add a rule unless an equivalent one is present. Returns whether it was added."""
        self.n_candidates += 1
        if rule.signature in self._rules:
            return False
        self._positions[rule.signature] = len(self._rules)
        self._rules[rule.signature] = rule
        return True

    def merge(self, other: 'RuleEnsemble') -> 'RuleEnsemble':
        """New ensemble holding this ensemble's rules followed by the unseen rules of other."""
        merged = RuleEnsemble(self)
        for rule in other:
            merged.add(rule)
        merged.n_candidates = self.n_candidates + other.n_candidates
        return merged

    @classmethod
    def from_candidates(cls, candidates: Iterable[Rule], max_candidates: Optional[int] = None) -> 'RuleEnsemble':
        """Fold a stream of candidate rules, aborting once more than max_candidates were seen."""
        ensemble = cls()
        for rule in candidates:
            if max_candidates is not None and ensemble.n_candidates >= max_candidates:
                raise RuleLimitError(ensemble.n_candidates + 1, max_candidates)
            ensemble.add(rule)
        return ensemble

    def __len__(self):
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules.values())

    def __getitem__(self, i: int) -> Rule:
        return self.rules[i]

    def __contains__(self, rule: Rule) -> bool:
        return rule.signature in self._rules

    @property
    def rules(self) -> List[Rule]:
        return list(self._rules.values())

    @property
    def signatures(self) -> List[tuple]:
        return list(self._rules.keys())

    def index(self, rule: Rule) -> int:
        try:
            return self._positions[rule.signature]
        except KeyError:
            raise ValueError(f'{rule!r} is not in the ensemble') from None

    def transform(self, X: np.ndarray) -> np.ndarray:
        """Binary matrix with one column per rule, 1 where the rule fires on the encoded row."""
        X_transformed = np.zeros((X.shape[0], len(self)))
        for i, rule in enumerate(self):
            X_transformed[:, i] = rule.evaluate(X)
        return X_transformed

    def to_dict(self) -> dict:
        return {'rules': [rule.to_dict() for rule in self]}

    @classmethod
    def from_dict(cls, d: dict) -> 'RuleEnsemble':
        return cls(Rule.from_dict(r) for r in d['rules'])

    def __str__(self):
        return str([repr(rule) for rule in self])
