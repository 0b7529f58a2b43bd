import logging
from typing import Iterator, List, Optional, Sequence

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs
from sklearn.ensemble import GradientBoostingClassifier, GradientBoostingRegressor, RandomForestClassifier, \
    RandomForestRegressor
from tqdm import tqdm

from sparserules.rule_set.rule_ensemble import RuleEnsemble
from sparserules.util.arguments import Algorithm
from sparserules.util.convert import TreeStructure, tree_to_arena
from sparserules.util.errors import RuleLimitError, StageError, TrainingCancelled
from sparserules.util.metrics import Family
from sparserules.util.rule import Rule

logger = logging.getLogger(__name__)


def check_cancelled(cancel_event, stage: str):
    if cancel_event is not None and cancel_event.is_set():
        raise TrainingCancelled(f'training cancelled during {stage}')


def get_tree_generator(algorithm: Algorithm, family: Family, max_depth: int, n_estimators: int,
                       random_state=None, n_jobs=None):
    """Unfitted sklearn ensemble growing n_estimators trees of the given depth."""
    if algorithm is Algorithm.GBM:
        gbm_cls = GradientBoostingRegressor if family is Family.REGRESSION else GradientBoostingClassifier
        return gbm_cls(n_estimators=n_estimators, max_depth=max_depth, random_state=random_state)
    drf_cls = RandomForestRegressor if family is Family.REGRESSION else RandomForestClassifier
    return drf_cls(n_estimators=n_estimators, max_depth=max_depth, random_state=random_state, n_jobs=n_jobs)


def _fitted_trees(tree_generator) -> Iterator[tuple]:
    """(tree_index, class_index, tree) for every tree of a fitted ensemble."""
    if isinstance(tree_generator, (RandomForestClassifier, RandomForestRegressor)):
        for i, tree in enumerate(tree_generator.estimators_):
            yield i, None, tree
    else:
        estimators_ = tree_generator.estimators_  # shape (n_stages, K)
        per_class = estimators_.shape[1] > 1
        for i in range(estimators_.shape[0]):
            for k in range(estimators_.shape[1]):
                yield i, (k if per_class else None), estimators_[i, k]


def train_tree_ensembles(X, y, sample_weight, algorithm: Algorithm, family: Family, depths: Sequence[int],
                         n_estimators: int, schema=None, random_state=None, n_jobs=None, cancel_event=None,
                         verbose=False) -> List[TreeStructure]:
    """Grow one tree ensemble per depth and return every tree as a TreeStructure.

    Errors raised by the tree trainer are re-raised as StageError naming the depth.
    """
    trees = []
    for depth in tqdm(depths, disable=not verbose, desc='tree depths'):
        check_cancelled(cancel_event, 'tree training')
        tree_generator = get_tree_generator(algorithm, family, depth, n_estimators,
                                            random_state=random_state, n_jobs=n_jobs)
        try:
            tree_generator.fit(X, y, sample_weight=sample_weight)
        except Exception as err:
            raise StageError(f'{algorithm.value} tree training (depth={depth})', str(err)) from err
        n_before = len(trees)
        for tree_index, class_index, tree in _fitted_trees(tree_generator):
            trees.append(tree_to_arena(tree, model_depth=depth, tree_index=tree_index, schema=schema,
                                       class_index=class_index))
        logger.info('trained %d %s trees of depth %d', len(trees) - n_before, algorithm.value, depth)
    return trees


def extract_rule_paths(tree: TreeStructure, min_rule_length: int, max_rule_length: int) -> Iterator[Rule]:
    """One candidate rule per node whose root-to-node path length is in range.

    The length of a path is the number of split conditions on it, so the root
    (length 0) never yields a rule.
    """
    for node, conditions in tree.iter_paths():
        if node.depth == 0 or not min_rule_length <= len(conditions) <= max_rule_length:
            continue
        yield Rule(tuple(conditions), rule_id=tree.node_name(node.node_id))


def _local_ensemble(trees: List[TreeStructure], min_rule_length, max_rule_length, max_candidates) -> RuleEnsemble:
    candidates = (rule for tree in trees for rule in extract_rule_paths(tree, min_rule_length, max_rule_length))
    return RuleEnsemble.from_candidates(candidates, max_candidates=max_candidates)


def extract_rules(trees: List[TreeStructure], min_rule_length: int, max_rule_length: int,
                  max_candidates: Optional[int] = None, n_jobs=None) -> RuleEnsemble:
    """Extract and deduplicate the rules of all trees.

    Trees are split into contiguous chunks that are deduplicated independently
    (in parallel if n_jobs allows), then the partial ensembles are merged in
    tree order, giving the same rules and order as a sequential fold.

    Raises
    ------
    RuleLimitError
        If more than max_candidates candidate rules are produced.
    """
    n_chunks = min(effective_n_jobs(n_jobs), max(len(trees), 1))
    chunks = [list(chunk) for chunk in np.array_split(np.arange(len(trees)), n_chunks)]
    if n_chunks == 1:
        partials = [_local_ensemble(trees, min_rule_length, max_rule_length, max_candidates)]
    else:
        partials = Parallel(n_jobs=n_jobs)(
            delayed(_local_ensemble)([trees[i] for i in chunk], min_rule_length, max_rule_length, max_candidates)
            for chunk in chunks)

    ensemble = RuleEnsemble()
    for partial in partials:
        ensemble = ensemble.merge(partial)
        if max_candidates is not None and ensemble.n_candidates > max_candidates:
            raise RuleLimitError(ensemble.n_candidates, max_candidates)
    logger.info('extracted %d candidate rules, %d unique', ensemble.n_candidates, len(ensemble))
    return ensemble
