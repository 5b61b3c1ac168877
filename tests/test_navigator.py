import unittest

import navigator as nav
from fakes import OTHER, ROOT, VIEWER, bid, region, territory, transient
from ledger_client import NotFoundError


T1 = territory(2, 1, region(0, 0, 1, 1))
T2 = territory(3, 1, region(1, 1, 2, 2), owner=VIEWER)
T1A = territory(4, 2, region(0.1, 0.1, 0.2, 0.2))


def _run(state, *events):
    actions = []
    for ev in events:
        state, out = nav.transition(state, ev)
        actions.extend(out)
    return state, actions


def _of(actions, kind):
    return [a for a in actions if isinstance(a, kind)]


class NavigatorTests(unittest.TestCase):
    def _at_root(self, account=VIEWER) -> nav.NavState:
        st = nav.initial_state(1, account)
        st, actions = _run(st, nav.ViewTerritory(1))
        (fetch,) = _of(actions, nav.FetchAncestry)
        st, actions = _run(st, nav.AncestryLoaded(fetch.seq, 1, (ROOT,)))
        children = _of(actions, nav.FetchChildren)[0]
        bids = _of(actions, nav.FetchBids)[0]
        st, _ = _run(
            st,
            nav.ChildrenLoaded(children.seq, 1, (T1, T2)),
            nav.BidsLoaded(bids.seq, 1, (bid(10, 5, recipient=VIEWER), bid(11, 2))),
        )
        return st

    # ------------------ Loading ------------------

    def test_view_loads_ancestry_then_children_and_bids(self):
        st = self._at_root()
        self.assertEqual([t.territory_id for t in st.path], [1])
        self.assertEqual(set(st.children), {2, 3})
        self.assertEqual(set(st.bids), {10, 11})
        self.assertEqual(nav.check_invariants(st), [])

    def test_loaded_entities_are_tagged_for_account(self):
        st = self._at_root()
        self.assertTrue(st.children[3].owned_by_viewer)
        self.assertFalse(st.children[2].owned_by_viewer)
        self.assertTrue(st.bids[10].owned_by_viewer)

    def test_ancestry_reply_is_reordered_root_first(self):
        st = nav.initial_state(1)
        st, actions = _run(st, nav.ViewTerritory(4))
        seq = _of(actions, nav.FetchAncestry)[0].seq
        st, actions = _run(st, nav.AncestryLoaded(seq, 4, (T1A, T1, ROOT)))
        self.assertEqual([t.territory_id for t in st.path], [1, 2, 4])
        self.assertEqual(_of(actions, nav.FetchChildren)[0].parent_id, 4)
        self.assertEqual(_of(actions, nav.FocusRegion)[0].region, T1A.region)

    def test_invariants_flag_entities_outside_current_territory(self):
        st = self._at_root()
        st, actions = _run(st, nav.Descend(2))
        seq = _of(actions, nav.FetchBids)[0].seq
        stray = bid(30, 1, reg=region(1.5, 1.5, 1.8, 1.8))
        st, _ = _run(st, nav.BidsLoaded(seq, 2, (stray,)))
        self.assertEqual(nav.check_invariants(st), ["bid 30 lies outside territory 2"])

    # ------------------ Descend ------------------

    def test_descend_appends_child_and_requests_its_view(self):
        st = self._at_root()
        st, actions = _run(st, nav.Descend(2))
        self.assertEqual([t.territory_id for t in st.path], [1, 2])
        self.assertEqual(st.children, {})
        self.assertEqual(st.bids, {})
        self.assertEqual(_of(actions, nav.FetchChildren)[0].parent_id, 2)
        self.assertEqual(_of(actions, nav.FetchBids)[0].parent_id, 2)
        self.assertEqual(len(_of(actions, nav.Redraw)), 1)
        self.assertEqual(nav.check_invariants(st), [])

    def test_reselecting_ancestor_truncates_path(self):
        st = self._at_root()
        st, actions = _run(st, nav.Descend(2))
        seq = _of(actions, nav.FetchChildren)[0].seq
        st, _ = _run(st, nav.ChildrenLoaded(seq, 2, (T1A,)), nav.Descend(4))
        self.assertEqual([t.territory_id for t in st.path], [1, 2, 4])
        st, actions = _run(st, nav.Descend(1))
        self.assertEqual([t.territory_id for t in st.path], [1])
        self.assertEqual(_of(actions, nav.FetchChildren)[0].parent_id, 1)

    def test_reselecting_current_territory_refocuses(self):
        st = self._at_root()
        st, _ = _run(st, nav.Descend(2))
        st, actions = _run(st, nav.Descend(2))
        self.assertEqual([t.territory_id for t in st.path], [1, 2])
        self.assertEqual(_of(actions, nav.FocusRegion), [nav.FocusRegion(region=T1.region)])
        self.assertEqual(_of(actions, nav.FetchChildren)[0].parent_id, 2)

    def test_descend_into_unknown_id_changes_nothing_but_display(self):
        st = self._at_root()
        st, _ = _run(st, nav.ToggleBid(10, True))
        st2, actions = _run(st, nav.Descend(99))
        self.assertEqual(st2.path, st.path)
        self.assertEqual(st2.children, st.children)
        self.assertEqual(st2.approve_display, 0.0)
        self.assertFalse(_of(actions, nav.FetchChildren))

    def test_descend_discards_inflight_ancestry(self):
        st = self._at_root()
        st, actions = _run(st, nav.RefreshView(include_ancestry=True))
        old_seq = _of(actions, nav.FetchAncestry)[0].seq
        st, _ = _run(st, nav.Descend(2))
        st, actions = _run(st, nav.AncestryLoaded(old_seq, 1, (ROOT,)))
        self.assertEqual([t.territory_id for t in st.path], [1, 2])
        self.assertEqual(actions, [])

    # ------------------ Stale replies ------------------

    def test_slow_children_reply_cannot_overwrite_newer_one(self):
        st = self._at_root()
        st, a1 = _run(st, nav.Descend(2))
        r1 = _of(a1, nav.FetchChildren)[0]
        st, a2 = _run(st, nav.RefreshView())
        r2 = _of(a2, nav.FetchChildren)[0]
        # R2 completes first, then the slow R1.
        st, _ = _run(st, nav.ChildrenLoaded(r2.seq, 2, (T1A,)))
        st, actions = _run(st, nav.ChildrenLoaded(r1.seq, 2, ()))
        self.assertEqual(set(st.children), {4})
        self.assertEqual(actions, [])

    def test_reply_for_previous_node_is_dropped(self):
        st = self._at_root()
        st, actions = _run(st, nav.RefreshView())
        stale = _of(actions, nav.FetchBids)[0]
        st, _ = _run(st, nav.Descend(2))
        st, actions = _run(st, nav.BidsLoaded(stale.seq, 1, (bid(12, 1),)))
        self.assertEqual(st.bids, {})
        self.assertTrue(nav.is_stale(st, nav.BidsLoaded(stale.seq, 1, ())))

    def test_stale_failure_is_not_reported(self):
        st = self._at_root()
        st, a1 = _run(st, nav.RefreshView())
        r1 = _of(a1, nav.FetchChildren)[0]
        st, _ = _run(st, nav.RefreshView())
        st, actions = _run(st, nav.ChildrenFailed(r1.seq, 1, transient()))
        self.assertEqual(actions, [])

    # ------------------ Failures ------------------

    def test_children_failure_keeps_previous_children(self):
        st = self._at_root()
        st, actions = _run(st, nav.RefreshView())
        seq = _of(actions, nav.FetchChildren)[0].seq
        err = transient()
        st2, actions = _run(st, nav.ChildrenFailed(seq, 1, err))
        self.assertEqual(st2.children, st.children)
        (report,) = _of(actions, nav.ReportError)
        self.assertIs(report.error, err)

    def test_ancestry_failure_falls_back_to_root_once(self):
        st = nav.initial_state(1)
        st, actions = _run(st, nav.ViewTerritory(99))
        seq = _of(actions, nav.FetchAncestry)[0].seq
        err = NotFoundError("gone")
        st, actions = _run(st, nav.AncestryFailed(seq, 99, err))
        self.assertIs(_of(actions, nav.ReportError)[0].error, err)
        retry = _of(actions, nav.FetchAncestry)[0]
        self.assertEqual(retry.territory_id, 1)
        self.assertTrue(retry.fallback)
        # The fallback lookup failing is reported but not retried again.
        st, actions = _run(st, nav.AncestryFailed(retry.seq, 1, transient(), fallback=retry.fallback))
        self.assertEqual(len(_of(actions, nav.ReportError)), 1)
        self.assertFalse(_of(actions, nav.FetchAncestry))

    def test_failed_root_lookup_is_retried_once(self):
        st = nav.initial_state(1)
        st, actions = _run(st, nav.ViewTerritory(1))
        first = _of(actions, nav.FetchAncestry)[0]
        self.assertFalse(first.fallback)
        st, actions = _run(st, nav.AncestryFailed(first.seq, 1, transient()))
        (retry,) = _of(actions, nav.FetchAncestry)
        self.assertEqual((retry.territory_id, retry.fallback), (1, True))
        st, _ = _run(st, nav.AncestryLoaded(retry.seq, 1, (ROOT,), fallback=True))
        self.assertEqual([t.territory_id for t in st.path], [1])

    def test_view_stuck_after_failures_recovers_on_refresh(self):
        st = nav.initial_state(1)
        st, actions = _run(st, nav.ViewTerritory(1))
        seq = _of(actions, nav.FetchAncestry)[0].seq
        st, actions = _run(st, nav.AncestryFailed(seq, 1, transient()))
        retry = _of(actions, nav.FetchAncestry)[0]
        st, actions = _run(st, nav.AncestryFailed(retry.seq, 1, transient(), fallback=True))
        self.assertEqual(st.path, ())
        self.assertFalse(_of(actions, nav.FetchAncestry))
        st, actions = _run(st, nav.RefreshView(include_ancestry=True))
        (fetch,) = _of(actions, nav.FetchAncestry)
        self.assertEqual(fetch.territory_id, 1)
        st, _ = _run(st, nav.AncestryLoaded(fetch.seq, 1, (ROOT,)))
        self.assertEqual([t.territory_id for t in st.path], [1])

    def test_ancestry_fallback_lands_on_root(self):
        st = self._at_root()
        st, actions = _run(st, nav.Descend(2), nav.RefreshView(include_ancestry=True))
        seq = _of(actions, nav.FetchAncestry)[0].seq
        st, actions = _run(st, nav.AncestryFailed(seq, 2, transient()))
        retry = _of(actions, nav.FetchAncestry)[0]
        st, _ = _run(st, nav.AncestryLoaded(retry.seq, 1, (ROOT,)))
        self.assertEqual([t.territory_id for t in st.path], [1])

    def test_incomplete_ancestry_is_treated_as_failure(self):
        st = nav.initial_state(1)
        st, actions = _run(st, nav.ViewTerritory(4))
        seq = _of(actions, nav.FetchAncestry)[0].seq
        st, actions = _run(st, nav.AncestryLoaded(seq, 4, (T1A, ROOT)))
        self.assertIsInstance(_of(actions, nav.ReportError)[0].error, nav.NavigationError)
        self.assertEqual(_of(actions, nav.FetchAncestry)[0].territory_id, 1)
        self.assertEqual(st.path, ())

    # ------------------ Bids and account ------------------

    def test_toggle_updates_display_and_total(self):
        st = self._at_root()
        st, actions = _run(st, nav.ToggleBid(10, True), nav.ToggleBid(11, True))
        self.assertAlmostEqual(nav.selected_total(st), 7.0)
        self.assertAlmostEqual(st.approve_display, 7.0)
        self.assertEqual(nav.selected_ids(st), frozenset({10, 11}))
        self.assertEqual(len(_of(actions, nav.Redraw)), 2)

    def test_toggle_unknown_bid_is_silent(self):
        st = self._at_root()
        st2, actions = _run(st, nav.ToggleBid(42, True))
        self.assertIs(st2, st)
        self.assertEqual(actions, [])

    def test_bid_refresh_resets_selection(self):
        st = self._at_root()
        st, _ = _run(st, nav.ToggleBid(10, True))
        st, actions = _run(st, nav.RefreshView())
        seq = _of(actions, nav.FetchBids)[0].seq
        st, _ = _run(st, nav.BidsLoaded(seq, 1, (bid(10, 5, recipient=VIEWER),)))
        self.assertEqual(nav.selected_total(st), 0.0)
        self.assertEqual(st.approve_display, 0.0)

    def test_account_switch_retags_but_keeps_selection(self):
        st = self._at_root(account=VIEWER)
        st, _ = _run(st, nav.ToggleBid(11, True))
        st, actions = _run(st, nav.AccountChanged(OTHER))
        self.assertFalse(st.children[3].owned_by_viewer)
        self.assertTrue(st.children[2].owned_by_viewer)
        self.assertTrue(st.bids[11].owned_by_viewer)
        self.assertTrue(st.bids[11].selected)
        self.assertEqual(len(_of(actions, nav.Redraw)), 1)
        st, _ = _run(st, nav.AccountChanged(None))
        self.assertFalse(any(t.owned_by_viewer for t in st.path + tuple(st.children.values())))

    def test_refresh_with_empty_path_reloads_root(self):
        st = nav.initial_state(1)
        st, actions = _run(st, nav.RefreshView())
        (fetch,) = actions
        self.assertEqual(fetch, nav.FetchAncestry(seq=st.ancestry_seq, territory_id=1))
        st, _ = _run(st, nav.AncestryLoaded(fetch.seq, 1, (ROOT,)))
        self.assertEqual([t.territory_id for t in st.path], [1])


if __name__ == "__main__":
    unittest.main()
