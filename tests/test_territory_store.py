import random
import unittest

import territory_store as ts
from fakes import ROOT, region, territory


def _tree():
    a = territory(2, 1, region(0, 0, 1, 1))
    b = territory(3, 2, region(0.1, 0.1, 0.5, 0.5))
    c = territory(4, 3, region(0.2, 0.2, 0.3, 0.3))
    return a, b, c


class DescendTests(unittest.TestCase):
    def test_selecting_child_appends_it(self):
        a, _, _ = _tree()
        path = ts.descend_path((ROOT,), {a.territory_id: a}, a.territory_id)
        self.assertEqual([t.territory_id for t in path], [1, 2])

    def test_reselecting_ancestor_truncates_to_it(self):
        a, b, c = _tree()
        path = (ROOT, a, b, c)
        self.assertEqual([t.territory_id for t in ts.descend_path(path, {}, 2)], [1, 2])
        self.assertEqual([t.territory_id for t in ts.descend_path(path, {}, 1)], [1])

    def test_unknown_id_leaves_path_alone(self):
        a, b, _ = _tree()
        path = (ROOT, a, b)
        self.assertEqual(ts.descend_path(path, {}, 99), path)

    def test_random_walks_keep_parent_chain(self):
        # A small fixed tree: every node has two children.
        nodes = {1: ROOT}
        next_id = 2
        for parent_id in range(1, 16):
            for _ in range(2):
                nodes[next_id] = territory(next_id, parent_id)
                next_id += 1
        rng = random.Random(7)
        path = (ROOT,)
        for _ in range(300):
            cur = path[-1].territory_id
            children = {t.territory_id: t for t in nodes.values() if t.parent_id == cur}
            candidates = list(children) + [t.territory_id for t in path]
            path = ts.descend_path(path, children, rng.choice(candidates))
            self.assertEqual(ts.path_violations(path, 1), [])


class AncestryOrderTests(unittest.TestCase):
    def test_leaf_first_reply_is_reversed(self):
        a, b, c = _tree()
        ordered = ts.order_ancestry((c, b, a, ROOT), 4, 1)
        self.assertEqual([t.territory_id for t in ordered], [1, 2, 3, 4])

    def test_any_order_is_reordered_by_parent_links(self):
        a, b, c = _tree()
        ordered = ts.order_ancestry((b, ROOT, c, a), 4, 1)
        self.assertEqual([t.territory_id for t in ordered], [1, 2, 3, 4])

    def test_root_alone(self):
        self.assertEqual(ts.order_ancestry((ROOT,), 1, 1), (ROOT,))

    def test_broken_chain_returns_none(self):
        a, _, c = _tree()
        self.assertIsNone(ts.order_ancestry((c, a, ROOT), 4, 1))
        self.assertIsNone(ts.order_ancestry((ROOT,), 4, 1))

    def test_cycle_returns_none(self):
        x = territory(5, 6)
        y = territory(6, 5)
        self.assertIsNone(ts.order_ancestry((x, y), 5, 1))


class PathViolationTests(unittest.TestCase):
    def test_healthy_path(self):
        a, b, _ = _tree()
        self.assertEqual(ts.path_violations((ROOT, a, b), 1), [])
        self.assertEqual(ts.path_violations((), 1), [])

    def test_wrong_root_and_broken_link(self):
        a, _, c = _tree()
        problems = ts.path_violations((a, c), 1)
        self.assertEqual(len(problems), 2)

    def test_current_territory(self):
        a, _, _ = _tree()
        self.assertIsNone(ts.current_territory(()))
        self.assertEqual(ts.current_territory((ROOT, a)), a)


if __name__ == "__main__":
    unittest.main()
