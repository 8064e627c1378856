import logging
import math
import shutil
from abc import abstractmethod
from collections.abc import Collection, Iterable, Iterator
from typing import Any, Callable, Generic, Optional, Protocol, TypeVar

logger = logging.getLogger(__name__)


class ComparableKey(Protocol):
    @abstractmethod
    def __lt__(self, other: Any, /) -> bool: ...


K = TypeVar('K', bound=ComparableKey)
V = TypeVar('V')

# stands in for "no value" internally so that None can still be stored as a value
_MISSING: Any = object()

MIN_RENDER_WIDTH = 8
TRUNCATE_TEXT = '..'


class EmptyTreeError(RuntimeError):
    """Raised when an operation that needs a node is performed on an empty tree."""


def floor_log2(n: int) -> int:
    """floor(log2(n)) for positive n, and 0 for n == 0."""
    return n.bit_length() - 1 if n > 0 else 0


class AvlTreeNode(Generic[K, V]):
    __slots__ = 'key', 'value', 'weight', 'left', 'right'

    def __init__(self, key: K, value: V):
        self.key: K = key
        self.value: V = value
        # number of nodes in the subtree rooted here, including this one
        self.weight: int = 1
        self.left: 'AvlTree[K, V]' = AvlTree()
        self.right: 'AvlTree[K, V]' = AvlTree()

    def __str__(self):
        return f'{self.__class__.__name__}({self.key!r}: {self.value!r})'

    def __repr__(self):
        return str(self)

    def get_height(self) -> int:
        """Approximate height derived from the weight as floor(log2(weight)). A single node and an empty tree both
        have a height of 0.
        """
        return floor_log2(self.weight)

    def get_balance(self) -> int:
        """Left height - right height. A positive balance is left heavy, a negative balance is right heavy."""
        return self.left.get_height() - self.right.get_height()


class ValueRef(Generic[V]):
    """Mutable handle on the value stored under a single key. Reading or assigning .value goes straight to the node,
    so the tree sees the change without another lookup.

    A handle is only valid until the next insert or remove on the tree. Removal can hand this node over to a
    neighbouring key, and access then raises KeyError rather than touching that key's value. A node that was cut out
    of the tree altogether cannot be detected.
    """
    __slots__ = '_node', '_key'

    def __init__(self, node: AvlTreeNode[Any, V]):
        self._node = node
        self._key = node.key

    def __repr__(self):
        return f'{self.__class__.__name__}({self._key!r})'

    def _checked_node(self) -> AvlTreeNode[Any, V]:
        node = self._node
        if node.key < self._key or self._key < node.key:
            raise KeyError(self._key)
        return node

    @property
    def value(self) -> V:
        return self._checked_node().value

    @value.setter
    def value(self, value: V):
        self._checked_node().value = value


class AvlTree(Collection, Generic[K, V]):
    """Ordered map kept balanced by rotations, with every node counting the size of its subtree so that the k-th
    smallest key can be found in O(log n).

    A tree is either empty or filled with one node, and that node's children are trees in turn, so the whole map and
    every subtree share this one type.
    """
    __slots__ = ('_node',)

    def __init__(self, init: Optional[Iterable[tuple[K, V]]] = None):
        """Create an empty tree, optionally inserting an iterable of (key, value) pairs in order."""
        self._node: 'AvlTreeNode[K, V] | None' = None
        if init:
            for key, value in init:
                self.insert(key, value)

    @classmethod
    def with_entry(cls, key: K, value: V) -> 'AvlTree[K, V]':
        """Create a tree holding a single node."""
        tree = cls()
        tree._node = AvlTreeNode(key, value)
        return tree

    def __str__(self):
        return f'{self.__class__.__name__}({list(self.items())})'

    def __repr__(self):
        return str(self)

    def __len__(self):
        """The number of entries is the weight of the root, so this is a constant time operation."""
        return self.get_weight()

    def __iter__(self) -> Iterator[K]:
        return self.keys()

    def __contains__(self, key: object):
        return self._find(key) is not None

    def __eq__(self, other):
        # equal if they hold the same entries in the same order (need not have the same tree structure)
        if not isinstance(other, AvlTree):
            return False
        try:
            for mine, theirs in zip(self.items(), other.items(), strict=True):
                if mine != theirs:
                    return False
        except ValueError:
            # they are not the same length
            return False
        return True

    def __getitem__(self, key: K) -> V:
        node = self._find(key)
        if node is None:
            raise KeyError(key)
        return node.value

    def __setitem__(self, key: K, value: V):
        self.insert(key, value)

    @property
    def node(self) -> AvlTreeNode[K, V]:
        """The node held by this tree. Must only be used on a filled tree."""
        if self._node is None:
            raise EmptyTreeError('Attempt to dereference an empty tree')
        return self._node

    def is_empty(self) -> bool:
        return self._node is None

    def is_filled(self) -> bool:
        return self._node is not None

    def get_weight(self) -> int:
        return self._node.weight if self._node is not None else 0

    def get_height(self) -> int:
        return self._node.get_height() if self._node is not None else 0

    def get_balance(self) -> int:
        return self._node.get_balance() if self._node is not None else 0

    def clear(self):
        """Removes all entries from the tree."""
        self._node = None

    def _find(self, key: Any) -> 'AvlTreeNode[K, V] | None':
        node = self._node
        while node is not None:
            # lesser keys are always in the left subtree, greater keys in the right subtree
            if key < node.key:
                node = node.left._node
            elif node.key < key:
                node = node.right._node
            else:
                return node
        return None

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        """Return the value stored under key, or default if the key is not in the tree."""
        node = self._find(key)
        return default if node is None else node.value

    def get_mut(self, key: K) -> 'ValueRef[V] | None':
        """Return a mutable handle on the value stored under key, or None if the key is not in the tree."""
        node = self._find(key)
        return None if node is None else ValueRef(node)

    def get_nth(self, index: int) -> 'tuple[K, V] | None':
        """Return the (key, value) pair at 0-based ascending position index, or None if index is out of range.

        The weight of the left subtree is the number of keys smaller than the current node, which tells the descent
        which way to go without looking at any keys.
        """
        if index < 0:
            return None
        node = self._node
        while node is not None:
            left_weight = node.left.get_weight()
            if index == left_weight:
                return node.key, node.value
            if index < left_weight:
                node = node.left._node
            else:
                index -= left_weight + 1
                node = node.right._node
        return None

    def insert(self, key: K, value: V) -> Optional[V]:
        """Insert key with value. If the key was already present, its value is overwritten and the previous value is
        returned. Otherwise returns None.
        """
        previous = self._insert(key, value)
        return None if previous is _MISSING else previous

    def _insert(self, key: K, value: V) -> Any:
        if self._node is None:
            self._node = AvlTreeNode(key, value)
            return _MISSING
        node = self._node
        if key < node.key:
            previous = node.left._insert(key, value)
        elif node.key < key:
            previous = node.right._insert(key, value)
        else:
            # overwriting leaves the shape and every weight as they were
            previous = node.value
            node.value = value
            return previous
        if previous is _MISSING:
            # this subtree gained a node
            node.weight += 1
            self._rebalance()
        return previous

    def remove(self, key: K) -> Optional[V]:
        """Remove key from the tree. Return its value, or None if the key was not present."""
        removed = self._remove(key)
        return None if removed is _MISSING else removed

    def _remove(self, key: K) -> Any:
        node = self._node
        if node is None:
            return _MISSING
        if key < node.key:
            removed = node.left._remove(key)
        elif node.key < key:
            removed = node.right._remove(key)
        else:
            removed = node.value
            if node.left.is_empty() and node.right.is_empty():
                self._node = None
                return removed
            # take over the neighbouring entry, then remove that entry from the subtree it came from
            if node.left.is_filled():
                node.key, node.value = node.left._predecessor()
                node.left._remove(node.key)
            else:
                node.key, node.value = node.right._successor()
                node.right._remove(node.key)
            node.weight -= 1
            self._rebalance()
            return removed
        if removed is not _MISSING:
            node.weight -= 1
            self._rebalance()
        return removed

    def _predecessor(self) -> tuple[K, V]:
        """Key and value of the rightmost node, i.e. the greatest key in this tree."""
        node = self.node
        while node.right._node is not None:
            node = node.right._node
        return node.key, node.value

    def _successor(self) -> tuple[K, V]:
        """Key and value of the leftmost node, i.e. the least key in this tree."""
        node = self.node
        while node.left._node is not None:
            node = node.left._node
        return node.key, node.value

    def _take(self) -> 'AvlTree[K, V]':
        """Move this tree's node into a new tree, leaving this one empty."""
        moved: AvlTree[K, V] = AvlTree()
        moved._node, self._node = self._node, None
        return moved

    def _assign(self, other: 'AvlTree[K, V]'):
        """Move other's node into this tree, leaving other empty."""
        self._node, other._node = other._node, None

    def _rebalance(self):
        """Rotate at this node until it is in balance. Children must already be balanced and have correct weights.

        Since a single node and an empty tree both have height 0, a rotation can carry a short chain under one side of
        the new root and leave it, or the demoted child, out of balance. So after every rotation the two children are
        rebalanced first and the new root is checked again.
        """
        while self._rotate_once():
            node = self.node
            for child in (node.left, node.right):
                if child.is_filled():
                    child._rebalance()
            self._update_weights(1)

    def _rotate_once(self) -> bool:
        """Apply the rotation this node's balance calls for, if any. Return True if a rotation occurred.

        Ties in the child's balance go to the single rotation; leaving them alone would keep a balance of 2.
        """
        node = self.node
        balance = node.get_balance()
        if balance >= 2:
            # left heavy
            if node.left.get_balance() >= 0:
                logger.debug('left-left rotation at %r', node.key)
                self._rotate_left_left()
            else:
                logger.debug('left-right rotation at %r', node.key)
                self._rotate_left_right()
            return True
        elif balance <= -2:
            # right heavy
            if node.right.get_balance() <= 0:
                logger.debug('right-right rotation at %r', node.key)
                self._rotate_right_right()
            else:
                logger.debug('right-left rotation at %r', node.key)
                self._rotate_right_left()
            return True
        return False

    def _rotate_left_left(self):
        """The left child becomes the root of this subtree."""
        #      *N           L
        #     L   C   =>  A  *N
        #    A B             B C
        n = self._take()
        l = n.node.left
        n.node.left = l.node.right
        l.node.right = n
        self._assign(l)
        self._update_weights(2)

    def _rotate_right_right(self):
        """The right child becomes the root of this subtree."""
        #    *N              R
        #   A   R     =>   *N  C
        #      B C         A B
        n = self._take()
        r = n.node.right
        n.node.right = r.node.left
        r.node.left = n
        self._assign(r)
        self._update_weights(2)

    def _rotate_left_right(self):
        """The right child of the left child becomes the root of this subtree."""
        #      *N             G
        #     L   D   =>    L  *N
        #    A G           A B C D
        #     B C
        n = self._take()
        l = n.node.left
        g = l.node.right
        n.node.left = g.node.right
        l.node.right = g.node.left
        g.node.left = l
        g.node.right = n
        self._assign(g)
        self._update_weights(2)

    def _rotate_right_left(self):
        """The left child of the right child becomes the root of this subtree."""
        #    *N               G
        #   A   R     =>   *N   R
        #      G D         A B C D
        #     B C
        n = self._take()
        r = n.node.right
        g = r.node.left
        n.node.right = g.node.left
        r.node.left = g.node.right
        g.node.left = n
        g.node.right = r
        self._assign(g)
        self._update_weights(2)

    def _update_weights(self, depth: int) -> int:
        """Recompute weights from depth levels below this node back up to it. Nodes deeper than that keep their
        stored weight. A rotation only moves nodes within two levels of its root, so a depth of 2 is enough there.
        """
        node = self.node
        if depth >= 0:
            node.weight = 1 + sum(child._update_weights(depth - 1) for child in (node.left, node.right)
                                  if child.is_filled())
        return node.weight

    def items(self) -> Iterator[tuple[K, V]]:
        """Yield (key, value) pairs in ascending key order."""
        stack: list[AvlTreeNode[K, V]] = []
        node = self._node
        while stack or node is not None:
            # go as far left as possible, then emit and continue with the right subtree
            while node is not None:
                stack.append(node)
                node = node.left._node
            node = stack.pop()
            yield node.key, node.value
            node = node.right._node

    def keys(self) -> Iterator[K]:
        for key, _ in self.items():
            yield key

    def values(self) -> Iterator[V]:
        for _, value in self.items():
            yield value

    def _calculate_len(self) -> int:
        """Count the nodes by walking the tree instead of reading the weight. This should only be used for testing
        since it visits every node.
        """
        return sum(1 for _ in self.items())

    def _calculate_height(self) -> int:
        """Number of levels in the tree, found by breadth first search. Only for testing."""
        depth = 0
        level = [self._node] if self._node is not None else []
        while level:
            depth += 1
            level = [c._node for n in level for c in (n.left, n.right) if c._node is not None]
        return depth

    def check_invariants(self):
        """Check search order, weights and balance at every node, raising AssertionError on the first violation.
        This walks the whole tree and should only be used for testing.
        """
        self._check_subtree(_MISSING, _MISSING)

    def _check_subtree(self, low: Any, high: Any) -> int:
        node = self._node
        if node is None:
            return 0
        if low is not _MISSING and not low < node.key:
            raise AssertionError(f'{node.key!r} is not greater than {low!r}')
        if high is not _MISSING and not node.key < high:
            raise AssertionError(f'{node.key!r} is not less than {high!r}')
        weight = 1 + node.left._check_subtree(low, node.key) + node.right._check_subtree(node.key, high)
        if node.weight != weight:
            raise AssertionError(f'weight of {node.key!r} is {node.weight}, expected {weight}')
        if abs(node.get_balance()) > 1:
            raise AssertionError(f'{node.key!r} is out of balance ({node.get_balance()})')
        return weight

    def render(self, max_width: Optional[int] = None, min_chars_per_node: int = 3, empty_node_text: str = '<>',
               node_to_str: Callable[[AvlTreeNode[K, V]], str] = lambda n: str(n.key)) -> list[str]:
        """Lay the tree out as lines of text, one line of nodes per level with a line of arrows between levels.

        max_width is the amount of space available for each line; None (the default) uses the current console width.

        min_chars_per_node is the least space a node may get. Once a level would need less than that, a '...' line
        is added and rendering stops.

        empty_node_text is the placeholder for a missing child.
        """
        if max_width is None:
            max_width = shutil.get_terminal_size((120, 24)).columns
        if max_width < MIN_RENDER_WIDTH:
            raise ValueError(f'available width of {max_width} needs to be at least {MIN_RENDER_WIDTH}')
        if min_chars_per_node < len(TRUNCATE_TEXT):
            raise ValueError(f'min chars per node {min_chars_per_node} needs to be at least {len(TRUNCATE_TEXT)}')
        if self._node is None:
            return [str(self)]
        # leave the last column free so that a full line does not wrap
        max_width -= 1
        lines: list[str] = []
        level: list[AvlTreeNode[K, V] | None] = [self._node]
        depth = 0
        while any(n is not None for n in level):
            # each level has 2^depth slots separated by single spaces
            slots = len(level)
            exact_width = (max_width - (slots - 1)) / slots
            width = math.floor(exact_width)
            if width < min_chars_per_node:
                lines.append(f'{"...": ^{max_width}}')
                break
            spare = exact_width - width
            pad_before = (width - 1) // 2
            pad_after = (width - 1) - pad_before
            arrows: list[str] = []
            labels: list[str] = []
            below: list[AvlTreeNode[K, V] | None] = []
            carried = 0.0
            for idx, node in enumerate(level):
                sep = '' if idx == slots - 1 else ' '
                # hand out the fractional leftovers one column at a time
                extra = 0
                if carried >= 1.0:
                    extra = 1
                    carried -= 1.0
                if node is None:
                    text = empty_node_text
                    below.extend((None, None))
                else:
                    text = node_to_str(node)
                    below.extend((node.left._node, node.right._node))
                if len(text) > width:
                    text = text[:width - len(TRUNCATE_TEXT)] + TRUNCATE_TEXT
                if depth:
                    if node is None:
                        arrows.append(' ' * (width + extra) + sep)
                    elif idx % 2 == 0:
                        arrows.append(' ' * (pad_before + extra) + '/' + '-' * pad_after + sep)
                    else:
                        arrows.append('-' * (pad_before + extra) + '\\' + ' ' * pad_after + sep)
                labels.append(f'{text: ^{width + extra}}{sep}')
                carried += spare
            if depth:
                lines.append(''.join(arrows))
            lines.append(''.join(labels))
            level = below
            depth += 1
        return lines

    def print(self, *args, **kwargs):
        """Print the tree to the console as laid out by render(), which takes the same arguments."""
        for line in self.render(*args, **kwargs):
            print(line)

    @staticmethod
    def test(iters=1, iters_per_iter=1000, delete_prob=.1, print_time=True, print_tree=False, seed=None):
        """Run a randomized check against a dict. Will throw an AssertionError if there is an error."""
        import random
        import time
        rng = random.Random(seed)
        start_time = time.time()
        for _ in range(iters):
            expected: dict[int, int] = {}
            tree: AvlTree[int, int] = AvlTree()
            # the tree should start out empty
            assert(len(tree) == 0)
            assert(tree.is_empty())
            for step in range(iters_per_iter):
                if expected and rng.random() <= delete_prob:
                    # making a random choice from a dict is O(N), but for a test, it's fine
                    key = rng.choice(tuple(expected))
                    assert(tree.remove(key) == expected.pop(key))
                    assert(key not in tree)
                else:
                    key = rng.randint(-100000, 100000)
                    assert(tree.insert(key, step) == expected.get(key))
                    expected[key] = step
            tree.check_invariants()
            assert(len(tree) == len(expected) == tree._calculate_len())
            assert(list(tree.items()) == sorted(expected.items()))
            for rank, key in enumerate(sorted(expected)):
                assert(tree.get_nth(rank) == (key, expected[key]))
            assert(tree.get_nth(len(expected)) is None)
            if print_tree:
                tree.print()
            for key, value in list(expected.items()):
                # overwriting with the same value changes nothing; then it should be removable exactly once
                assert(tree.insert(key, value) == value)
                assert(tree[key] == value)
                assert(tree.remove(key) == value)
                assert(tree.remove(key) is None)
            # after deleting everything, the tree should be empty
            assert(len(tree) == 0)
            assert(tree.is_empty())
            assert(list(tree) == [])
            assert(not tree)
        total_time = time.time() - start_time
        if print_time:
            logger.info('Test successful with %d iterations and %d steps per iteration', iters, iters_per_iter)
            logger.info('Total time of %.2fs and average time of %.2fs per iteration', total_time, total_time / iters)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')
    AvlTree.test()
