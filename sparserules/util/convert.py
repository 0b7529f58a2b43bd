from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor
from sklearn.tree import _tree

from sparserules.util.rule import Condition


@dataclass(frozen=True)
class TreeNode:
    """One node of a tree arena.

    ``condition`` is the test on the edge from the parent into this node and is
    None for the root.
    """
    node_id: int
    parent: int
    depth: int
    condition: Optional[Condition]
    children: Tuple[int, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0


class TreeStructure:
    """A trained tree stored as an arena of nodes addressed by index.

    Parameters
    ----------
    nodes : list of TreeNode
        ``nodes[i].node_id == i``, the root is node 0.
    model_depth : int
        The maximum depth the tree was grown to.
    tree_index : int
        Position of the tree within its ensemble.
    class_index : int, optional
        For boosted multi-class ensembles, the class this tree fits.
    """

    def __init__(self, nodes: List[TreeNode], model_depth: int, tree_index: int, class_index: Optional[int] = None):
        self.nodes = list(nodes)
        self.model_depth = model_depth
        self.tree_index = tree_index
        self.class_index = class_index

    def __len__(self):
        return len(self.nodes)

    def node_name(self, node_id: int) -> str:
        class_part = '' if self.class_index is None else f'C{self.class_index}'
        return f'M{self.model_depth}T{self.tree_index}{class_part}N{node_id}'

    def path_to(self, node_id: int) -> List[Condition]:
        """Conditions on the root-to-node path, root first."""
        conditions = []
        node = self.nodes[node_id]
        while node.parent >= 0:
            conditions.append(node.condition)
            node = self.nodes[node.parent]
        return conditions[::-1]

    def iter_paths(self) -> Iterator[Tuple[TreeNode, List[Condition]]]:
        """Depth-first walk yielding every node with its root-to-node conditions."""
        stack = [(0, [])]
        while len(stack) > 0:
            node_id, conditions = stack.pop()
            node = self.nodes[node_id]
            yield node, conditions
            # push right first so the left subtree is visited first
            for child in reversed(node.children):
                stack.append((child, conditions + [self.nodes[child].condition]))


def _split_conditions(feature, threshold, missing_go_to_left, categorical_levels=None):
    """The (left, right) conditions of one binary split."""
    if categorical_levels is None:
        left = Condition(feature, '<=', threshold=float(threshold), na_true=missing_go_to_left)
        right = Condition(feature, '>', threshold=float(threshold), na_true=not missing_go_to_left)
    else:
        # the tree was trained on level codes, so `code <= threshold` selects a set of levels
        codes = np.arange(len(categorical_levels))
        left = Condition(feature, 'in', categories=tuple(codes[codes <= threshold]), na_true=missing_go_to_left)
        right = Condition(feature, 'in', categories=tuple(codes[codes > threshold]), na_true=not missing_go_to_left)
    return left, right


def tree_to_arena(tree: Union[DecisionTreeClassifier, DecisionTreeRegressor],
                  model_depth: int,
                  tree_index: int,
                  schema=None,
                  class_index: Optional[int] = None) -> TreeStructure:
    """Convert a fitted sklearn tree into a TreeStructure.

    Split thresholds and missing value routing are copied unchanged so that the
    extracted conditions reproduce the tree's own decisions.

    Parameters
    ----------
    tree : fitted DecisionTreeClassifier/DecisionTreeRegressor
    model_depth : maximum depth the tree was grown to
    tree_index : position of the tree in its ensemble
    schema : FrameSchema, optional
        Used to decode splits on categorical features into level sets.
    class_index : int, optional
    """
    tree_ = tree.tree_
    missing_go_to_left = getattr(tree_, 'missing_go_to_left', None)

    children = {}
    incoming = {0: None}
    parents = {0: -1}
    depths = {0: 0}
    stack = [0]
    while len(stack) > 0:
        node_id = stack.pop()
        left_id, right_id = tree_.children_left[node_id], tree_.children_right[node_id]
        if tree_.feature[node_id] == _tree.TREE_UNDEFINED or left_id == right_id:
            children[node_id] = ()
            continue
        feature = int(tree_.feature[node_id])
        if missing_go_to_left is not None:
            na_left = bool(missing_go_to_left[node_id])
        else:
            na_left = bool(tree_.n_node_samples[left_id] >= tree_.n_node_samples[right_id])
        levels = schema.categorical_levels(feature) if schema is not None else None
        left, right = _split_conditions(feature, tree_.threshold[node_id], na_left, levels)
        for child_id, condition in ((int(left_id), left), (int(right_id), right)):
            incoming[child_id] = condition
            parents[child_id] = node_id
            depths[child_id] = depths[node_id] + 1
            stack.append(child_id)
        children[node_id] = (int(left_id), int(right_id))

    nodes = [TreeNode(node_id=i, parent=parents[i], depth=depths[i], condition=incoming[i], children=children[i])
             for i in range(tree_.node_count)]
    return TreeStructure(nodes, model_depth=model_depth, tree_index=tree_index, class_index=class_index)
