"""Tests for planning against recorded state."""

import pytest
from proxyplane.graph.expressions import UNKNOWN, InstanceKey
from proxyplane.reconcile.planner import Planner, fingerprint_config, teardown_order
from proxyplane.reconcile.results import Action
from proxyplane.state.models import StateRecord

ALICE = InstanceKey("secret", "user", "alice")
BOB = InstanceKey("secret", "user", "bob")
ROLE = InstanceKey("iam_role", "proxy")
PROXY = InstanceKey("db_proxy", "main")


def actions(plan):
    return {entry.key: entry.action for entry in plan.entries}


class TestFingerprint:
    def test_independent_of_key_order(self):
        assert fingerprint_config({"a": 1, "b": [1, 2]}) == fingerprint_config({"b": [1, 2], "a": 1})

    def test_changes_with_values(self):
        assert fingerprint_config({"a": 1}) != fingerprint_config({"a": 2})


class TestTeardownOrder:
    def test_dependents_before_dependencies(self):
        records = [
            StateRecord(ALICE, "f"),
            StateRecord(ROLE, "f", dependencies=[ALICE]),
            StateRecord(PROXY, "f", dependencies=[ROLE, ALICE]),
        ]

        assert [record.key for record in teardown_order(records)] == [PROXY, ROLE, ALICE]


class TestPlanner:
    async def test_initial_plan_creates_everything_in_dependency_order(self, reconciler, document):
        plan = await reconciler.plan(document)

        assert [entry.key for entry in plan.entries] == [ALICE, BOB, ROLE, PROXY]
        assert all(entry.action == Action.CREATE for entry in plan.entries)
        assert plan.entry(ROLE).dependencies == [ALICE, BOB]

    async def test_unknown_values_before_first_apply(self, reconciler, document):
        plan = await reconciler.plan(document)

        policy = plan.entry(ROLE).config["inline_policy"]
        assert policy["Statement"][0]["Resource"] == [UNKNOWN, UNKNOWN]
        assert plan.entry(PROXY).config["role_arn"] == UNKNOWN

    async def test_plan_makes_no_provider_calls(self, reconciler, provider, document):
        await reconciler.plan(document)

        assert provider.calls == []

    async def test_reapply_is_no_change(self, reconciler, document):
        await reconciler.apply(document)

        plan = await reconciler.plan(document)

        assert set(actions(plan).values()) == {Action.NO_CHANGE}
        assert not plan.has_changes

    async def test_config_change_updates_only_changed_instance(self, reconciler, make_document):
        await reconciler.apply(make_document())

        plan = await reconciler.plan(make_document(require_tls=False))

        assert actions(plan) == {
            ALICE: Action.NO_CHANGE,
            BOB: Action.NO_CHANGE,
            ROLE: Action.NO_CHANGE,
            PROXY: Action.UPDATE,
        }

    async def test_update_resolves_against_recorded_attributes(self, reconciler, provider, make_document):
        await reconciler.apply(make_document())

        plan = await reconciler.plan(make_document(require_tls=False))

        assert plan.entry(PROXY).config["role_arn"] == provider.resources["iam_role"]["proxy-role"]["arn"]

    async def test_collection_shrink_destroys_exactly_one(self, reconciler, make_document):
        await reconciler.apply(make_document())

        plan = await reconciler.plan(make_document(users={"alice": "secret-a"}))

        destroys = plan.by_action(Action.DESTROY)
        assert [entry.key for entry in destroys] == [BOB]
        assert plan.entry(ROLE).action == Action.UPDATE
        assert plan.entry(PROXY).action == Action.UPDATE
        assert plan.entries[-1].key == BOB

    async def test_new_member_is_created(self, reconciler, make_document):
        await reconciler.apply(make_document())

        plan = await reconciler.plan(
            make_document(users={"alice": "secret-a", "bob": "secret-b", "carol": "secret-c"})
        )

        assert plan.entry(InstanceKey("secret", "user", "carol")).action == Action.CREATE
        assert plan.entry(ALICE).action == Action.NO_CHANGE
        assert plan.counts["destroy"] == 0

    async def test_destroy_plan_orders_dependents_first(self, reconciler, document):
        await reconciler.apply(document)

        plan = await reconciler.plan(document, destroy=True)

        keys = [entry.key for entry in plan.entries]
        assert all(entry.action == Action.DESTROY for entry in plan.entries)
        assert keys.index(PROXY) < keys.index(ROLE) < keys.index(ALICE)
        assert keys.index(ROLE) < keys.index(BOB)

    async def test_refresh_recreates_instance_deleted_out_of_band(
        self, reconciler, provider, document
    ):
        await reconciler.apply(document)
        del provider.resources["db_proxy"]["main-proxy"]

        plan = await reconciler.plan(document, refresh=True)

        assert plan.entry(PROXY).action == Action.CREATE
        assert plan.entry(ROLE).action == Action.NO_CHANGE

    async def test_without_refresh_state_is_trusted(self, reconciler, provider, document):
        await reconciler.apply(document)
        del provider.resources["db_proxy"]["main-proxy"]

        plan = await reconciler.plan(document)

        assert plan.entry(PROXY).action == Action.NO_CHANGE

    async def test_refresh_needs_provider(self, state, document, reconciler):
        await reconciler.apply(document)
        graph = reconciler.build_graph(document)

        plan = await Planner(state).plan(graph, refresh=True)

        assert set(actions(plan).values()) == {Action.NO_CHANGE}


@pytest.mark.asyncio
async def test_plan_counts(reconciler, document):
    plan = await reconciler.plan(document)

    assert plan.counts == {"create": 4, "update": 0, "no_change": 0, "destroy": 0}
    assert plan.has_changes
