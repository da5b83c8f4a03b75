"""Tests for plan execution: ordering, retries, failure isolation, cancellation."""

import asyncio

import pytest
from proxyplane.core.errors import ProviderPermanentError, ProviderTransientError
from proxyplane.graph.expressions import InstanceKey
from proxyplane.providers.memory import InMemoryProvider
from proxyplane.reconcile.engine import Reconciler
from proxyplane.reconcile.executor import Executor
from proxyplane.reconcile.outputs import Unavailable
from proxyplane.reconcile.results import Outcome, RunStatus

ALICE = InstanceKey("secret", "user", "alice")
BOB = InstanceKey("secret", "user", "bob")
ROLE = InstanceKey("iam_role", "proxy")
PROXY = InstanceKey("db_proxy", "main")


def outcomes(result):
    return {key: instance.outcome for key, instance in result.instances.items()}


def independent_secrets(count):
    return {
        "resources": {
            "secret": {f"s{i}": {"config": {"name": f"secret-{i}"}} for i in range(count)},
        }
    }


class TestOrdering:
    async def test_scenario_applies_in_dependency_order(self, reconciler, provider, document):
        result = await reconciler.apply(document)

        assert result.status == RunStatus.SUCCESS
        assert set(outcomes(result).values()) == {Outcome.APPLIED}
        creates = [name for _, _, name in provider.calls_for("create")]
        assert creates.index("proxy-role") > creates.index("secret-a")
        assert creates.index("proxy-role") > creates.index("secret-b")
        assert creates.index("main-proxy") > creates.index("proxy-role")

    async def test_dependents_receive_provider_assigned_values(self, reconciler, provider, document):
        await reconciler.apply(document)

        secrets = provider.resources["secret"]
        role = provider.resources["iam_role"]["proxy-role"]
        proxy = provider.resources["db_proxy"]["main-proxy"]
        assert role["inline_policy"]["Statement"][0]["Resource"] == [
            secrets["secret-a"]["arn"],
            secrets["secret-b"]["arn"],
        ]
        assert proxy["role_arn"] == role["arn"]
        assert [auth["secret_arn"] for auth in proxy["auth"]] == [
            secrets["secret-a"]["arn"],
            secrets["secret-b"]["arn"],
        ]

    async def test_state_records_dependencies(self, reconciler, state, document):
        await reconciler.apply(document)

        record = await state.get(ROLE)
        assert record.dependencies == [ALICE, BOB]
        assert record.resource_id == "proxy-role"

    async def test_second_apply_makes_no_mutating_calls(self, reconciler, provider, document):
        await reconciler.apply(document)
        calls_before = len(provider.calls)

        result = await reconciler.apply(document)

        assert set(outcomes(result).values()) == {Outcome.NO_CHANGE}
        assert len(provider.calls) == calls_before
        assert len(provider.resources["secret"]) == 2

    async def test_apply_after_lost_state_adopts_existing_resources(
        self, provider, settings, ctx, tmp_path, document
    ):
        from proxyplane.state.file_store import JsonFileStateStore

        first = Reconciler(provider, JsonFileStateStore(tmp_path / "a.json"), settings=settings, ctx=ctx)
        await first.apply(document)
        second = Reconciler(provider, JsonFileStateStore(tmp_path / "b.json"), settings=settings, ctx=ctx)

        result = await second.apply(document)

        assert result.success
        assert len(provider.resources["secret"]) == 2
        assert len(provider.resources["db_proxy"]) == 1

    async def test_shrink_destroys_member_after_dependents_update(
        self, reconciler, provider, state, make_document
    ):
        await reconciler.apply(make_document())

        result = await reconciler.apply(make_document(users={"alice": "secret-a"}))

        assert result.instances[BOB].outcome == Outcome.DESTROYED
        assert result.instances[PROXY].outcome == Outcome.APPLIED
        assert "secret-b" not in provider.resources["secret"]
        assert await state.get(BOB) is None
        calls = provider.calls
        assert calls.index(("delete", "secret", "secret-b")) > calls.index(("update", "db_proxy", "main-proxy"))
        assert calls.index(("delete", "secret", "secret-b")) > calls.index(("update", "iam_role", "proxy-role"))

    async def test_destroy_tears_down_everything(self, reconciler, provider, state, document):
        await reconciler.apply(document)

        result = await reconciler.apply(document, destroy=True)

        assert set(outcomes(result).values()) == {Outcome.DESTROYED}
        assert all(not resources for resources in provider.resources.values())
        assert await state.list() == []
        deletes = [name for _, _, name in provider.calls_for("delete")]
        assert deletes.index("main-proxy") < deletes.index("proxy-role")

    async def test_destroy_of_resource_already_gone(self, reconciler, provider, state, document):
        await reconciler.apply(document)
        del provider.resources["db_proxy"]["main-proxy"]

        result = await reconciler.apply(document, destroy=True)

        assert result.instances[PROXY].outcome == Outcome.DESTROYED
        assert await state.get(PROXY) is None


class TestRetries:
    async def test_transient_error_is_retried(self, reconciler, provider, document):
        provider.inject_fault("create", "secret", "secret-a", ProviderTransientError("Throttling"), times=2)

        result = await reconciler.apply(document)

        assert result.status == RunStatus.SUCCESS
        assert result.instances[ALICE].attempts == 3
        assert len([c for c in provider.calls_for("create", "secret") if c[2] == "secret-a"]) == 3

    async def test_transient_error_exhausts_attempts(self, reconciler, provider, document):
        provider.inject_fault("create", "secret", "secret-a", ProviderTransientError("Throttling"), times=5)

        result = await reconciler.apply(document)

        alice = result.instances[ALICE]
        assert alice.outcome == Outcome.FAILED
        assert alice.attempts == 3
        assert "Throttling" in alice.error

    async def test_permanent_error_is_not_retried(self, reconciler, provider, document):
        provider.inject_fault("create", "secret", "secret-a", ProviderPermanentError("AccessDenied"))

        result = await reconciler.apply(document)

        assert result.instances[ALICE].outcome == Outcome.FAILED
        assert result.instances[ALICE].attempts == 1
        assert len([c for c in provider.calls_for("create", "secret") if c[2] == "secret-a"]) == 1

    async def test_validation_error_fails_instance(self, reconciler, make_document):
        result = await reconciler.apply(make_document(engine_family=""))

        assert result.instances[PROXY].outcome == Outcome.FAILED
        assert "ValidationException" in result.instances[PROXY].error


class TestFailureIsolation:
    async def test_failure_blocks_transitive_dependents(self, reconciler, provider, document):
        provider.inject_fault("create", "secret", "secret-a", ProviderPermanentError("AccessDenied"))

        result = await reconciler.apply(document)

        assert result.status == RunStatus.PARTIAL_FAILURE
        assert result.instances[ROLE].outcome == Outcome.BLOCKED
        assert result.instances[PROXY].outcome == Outcome.BLOCKED
        assert result.instances[ROLE].blocked_by == ALICE
        assert result.instances[PROXY].blocked_by == ALICE
        assert provider.calls_for("create", "iam_role") == []
        assert provider.calls_for("create", "db_proxy") == []

    async def test_sibling_branch_is_applied(self, reconciler, provider, state, document):
        provider.inject_fault("create", "secret", "secret-a", ProviderPermanentError("AccessDenied"))

        result = await reconciler.apply(document)

        assert result.instances[BOB].outcome == Outcome.APPLIED
        assert await state.get(BOB) is not None
        assert await state.get(ALICE) is None

    async def test_failed_instances_are_not_rolled_back(self, reconciler, provider, document):
        provider.inject_fault("create", "db_proxy", "main-proxy", ProviderPermanentError("Quota"))

        result = await reconciler.apply(document)

        assert result.instances[PROXY].outcome == Outcome.FAILED
        assert result.instances[ROLE].outcome == Outcome.APPLIED
        assert "proxy-role" in provider.resources["iam_role"]
        assert provider.calls_for("delete") == []

    async def test_outputs_of_failed_branch_are_unavailable(self, reconciler, provider, document):
        provider.inject_fault("create", "db_proxy", "main-proxy", ProviderPermanentError("Quota"))

        result = await reconciler.apply(document)

        assert isinstance(result.outputs["proxy_endpoint"], Unavailable)
        assert "db_proxy.main" in result.outputs["proxy_endpoint"].reason
        assert result.outputs["secret_arns"] == [
            provider.resources["secret"]["secret-a"]["arn"],
            provider.resources["secret"]["secret-b"]["arn"],
        ]

    async def test_rerun_after_failure_completes(self, reconciler, provider, document):
        provider.inject_fault("create", "secret", "secret-a", ProviderPermanentError("AccessDenied"))
        await reconciler.apply(document)

        result = await reconciler.apply(document)

        assert result.status == RunStatus.SUCCESS
        assert result.instances[BOB].outcome == Outcome.NO_CHANGE
        assert result.instances[PROXY].outcome == Outcome.APPLIED


class TestConcurrency:
    async def test_worker_pool_bounds_in_flight_calls(self, state, settings, ctx):
        provider = InMemoryProvider(latency=0.01)
        reconciler = Reconciler(
            provider, state, settings=settings.model_copy(update={"max_workers": 2}), ctx=ctx
        )

        result = await reconciler.apply(independent_secrets(6))

        assert result.success
        assert provider.max_in_flight == 2

    async def test_independent_instances_run_in_parallel(self, state, settings, ctx):
        provider = InMemoryProvider(latency=0.01)
        reconciler = Reconciler(
            provider, state, settings=settings.model_copy(update={"max_workers": 6}), ctx=ctx
        )

        await reconciler.apply(independent_secrets(6))

        assert provider.max_in_flight > 2

    async def test_dependency_chain_is_sequential(self, reconciler, provider, document):
        await reconciler.apply(document)

        assert provider.calls.index(("create", "db_proxy", "main-proxy")) == len(provider.calls) - 1

    def test_rejects_empty_pool(self, provider, state, ctx):
        with pytest.raises(ValueError):
            Executor(provider, state, ctx, max_workers=0)


class CancellingProvider(InMemoryProvider):
    """Cancels the run while the role is being created."""

    def __init__(self, cancel_event: asyncio.Event) -> None:
        super().__init__()
        self.cancel_event = cancel_event

    async def create(self, kind, config, ctx):
        if kind == "iam_role":
            self.cancel_event.set()
        return await super().create(kind, config, ctx)


class TestCancellation:
    async def test_cancel_before_start(self, reconciler, provider, document):
        cancel_event = asyncio.Event()
        cancel_event.set()

        result = await reconciler.apply(document, cancel_event=cancel_event)

        assert set(outcomes(result).values()) == {Outcome.CANCELLED}
        assert result.status == RunStatus.PARTIAL_FAILURE
        assert provider.calls == []

    async def test_in_flight_instance_completes_and_is_recorded(self, state, settings, ctx, document):
        cancel_event = asyncio.Event()
        provider = CancellingProvider(cancel_event)
        reconciler = Reconciler(provider, state, settings=settings, ctx=ctx)

        result = await reconciler.apply(document, cancel_event=cancel_event)

        assert result.instances[ROLE].outcome == Outcome.APPLIED
        assert await state.get(ROLE) is not None
        assert result.instances[PROXY].outcome == Outcome.CANCELLED
        assert provider.calls_for("create", "db_proxy") == []


class ReplacingProvider(InMemoryProvider):
    """Assigns the role a new ARN whenever it is updated."""

    async def update(self, kind, resource_id, config, ctx):
        attributes = await super().update(kind, resource_id, config, ctx)
        if kind == "iam_role":
            attributes["arn"] = f"{attributes['arn']}-v2"
            self.resources[kind][resource_id]["arn"] = attributes["arn"]
        return attributes


def with_role_description(document, description):
    document["resources"]["iam_role"]["proxy"]["config"]["description"] = description
    return document


class TestUnchangedDependents:
    async def test_dependent_follows_replaced_attribute(self, state, settings, ctx, make_document):
        provider = ReplacingProvider()
        reconciler = Reconciler(provider, state, settings=settings, ctx=ctx)
        await reconciler.apply(make_document())

        changed = with_role_description(make_document(), "rotated")
        result = await reconciler.apply(changed)

        role = provider.resources["iam_role"]["proxy-role"]
        assert result.status == RunStatus.SUCCESS
        assert result.instances[ROLE].outcome == Outcome.APPLIED
        assert result.instances[PROXY].outcome == Outcome.APPLIED
        assert provider.resources["db_proxy"]["main-proxy"]["role_arn"] == role["arn"]
        assert (await state.get(PROXY)).attributes["role_arn"] == role["arn"]

        plan = await reconciler.plan(changed)
        assert not plan.has_changes

    async def test_dependent_stays_unchanged_when_values_match(self, reconciler, provider, make_document):
        await reconciler.apply(make_document())

        result = await reconciler.apply(with_role_description(make_document(), "rotated"))

        assert result.instances[ROLE].outcome == Outcome.APPLIED
        assert result.instances[PROXY].outcome == Outcome.NO_CHANGE
        assert provider.calls_for("update", "db_proxy") == []


class TestEngine:
    async def test_cycle_aborts_before_provider_calls(self, reconciler, provider, document):
        from proxyplane.core.errors import CycleError

        document["resources"]["iam_role"]["proxy"]["config"]["description"] = {
            "$ref": "db_proxy.main.name"
        }

        with pytest.raises(CycleError):
            await reconciler.apply(document)
        assert provider.calls == []

    async def test_run_reports_configuration_error_as_status(self, reconciler, provider):
        result = await reconciler.run(
            {"resources": {"db_proxy": {"main": {"config": {"role_arn": {"$ref": "iam_role.x.arn"}}}}}}
        )

        assert result.status == RunStatus.ERROR
        assert "iam_role.x.arn" in result.error
        assert provider.calls == []

    async def test_outputs_from_state(self, reconciler, provider, document):
        await reconciler.apply(document)

        outputs = await reconciler.outputs(document)

        assert outputs["proxy_endpoint"] == provider.resources["db_proxy"]["main-proxy"]["endpoint"]

    async def test_result_serializes(self, reconciler, document):
        result = await reconciler.apply(document)

        payload = result.to_dict()

        assert payload["status"] == "success"
        assert [item["key"] for item in payload["instances"]][-1] == "db_proxy.main"
