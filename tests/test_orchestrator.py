"""
Tests for the tree orchestrator.

Runs whole chains against the in-memory control plane and checks ordering,
fail-fast halting, resumption and the persisted outcomes.
"""

from unittest.mock import AsyncMock

import pytest
from orgtree.chain.bootstrap import plan_organization
from orgtree.chain.requests import ProvisioningRequest, step_from_request
from orgtree.chain.steps import ResourceFamily
from orgtree.controlplane.memory import InMemoryControlPlane
from orgtree.core.errors import ConfigurationError, ValidationError
from orgtree.domain.specs import parse_organization_spec
from orgtree.operations import CompletionPoller, OperationDispatcher, PollPolicy
from orgtree.orchestration import StepStatus, TreeOrchestrator, verify_chain


def _orchestrator(control_plane, sleep, policies, checkpoint=None):
    dispatcher = OperationDispatcher(control_plane)
    return TreeOrchestrator(
        dispatcher,
        CompletionPoller(dispatcher, sleep=sleep),
        policies,
        checkpoint=checkpoint,
    )


def _plan(spec):
    return plan_organization(spec, region="us-east-1")


def _actions(control_plane):
    return [call.action for call in control_plane.calls]


@pytest.fixture
def single_account_tree():
    return parse_organization_spec(
        {
            "email": "ops@corp.io",
            "managementAccountId": "222222222222",
            "nestedOU": [{"name": "Dev", "accounts": [{"name": "app"}]}],
        }
    )


class TestFullRun:
    @pytest.mark.asyncio
    async def test_dispatches_in_chain_order(self, sdlc_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane(pending_polls=1)
        result = await _orchestrator(control_plane, no_sleep, policies).run(_plan(sdlc_tree))

        assert result.complete
        account_steps = ["create_account", "move_account", "register_delegated_administrator"]
        assert _actions(control_plane) == [
            "create_organization",
            "enable_aws_service_access",
            "enable_aws_service_access",
            "enable_aws_service_access",
            "list_roots",
            "create_bucket",
            "put_public_access_block",
            "put_bucket_policy",
            "create_trail",
            "start_logging",
            "create_organizational_unit",
            *account_steps,
            *account_steps,
            "create_organizational_unit",
            *account_steps,
        ]

    @pytest.mark.asyncio
    async def test_references_resolved_from_completed_steps(self, sdlc_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane()
        steps = _plan(sdlc_tree)
        result = await _orchestrator(control_plane, no_sleep, policies).run(steps)

        sdlc_id = result.outcomes["ou:SDLC"].entity_id
        account_id = result.outcomes["account:SDLC/Account1"].entity_id
        create_sdlc = next(c for c in control_plane.calls if c.action == "create_organizational_unit")
        move = next(c for c in control_plane.calls if c.action == "move_account")

        assert create_sdlc.parameters["ParentId"] == "r-0001"
        assert move.parameters == {
            "AccountId": account_id,
            "SourceParentId": "r-0001",
            "DestinationParentId": sdlc_id,
        }

    @pytest.mark.asyncio
    async def test_trail_bucket_named_after_organization(self, sdlc_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane()
        result = await _orchestrator(control_plane, no_sleep, policies).run(_plan(sdlc_tree))

        organization_id = result.outcomes["organization"].entity_id
        bucket = f"organization-trail-{organization_id}"
        policy = next(c for c in control_plane.calls if c.action == "put_bucket_policy")
        trail = next(c for c in control_plane.calls if c.action == "create_trail")

        assert result.outcomes["trail-bucket"].entity_id == f"/{bucket}"
        assert policy.parameters["Bucket"] == bucket
        assert f"AWSLogs/{organization_id}/" in policy.parameters["Policy"]
        assert "{id}" not in policy.parameters["Policy"]
        assert trail.parameters["S3BucketName"] == bucket

    @pytest.mark.asyncio
    async def test_entities_receive_ids(self, sdlc_tree, no_sleep, policies):
        steps = _plan(sdlc_tree)
        result = await _orchestrator(InMemoryControlPlane(), no_sleep, policies).run(steps)

        for step in steps:
            assert step.target.id == result.outcomes[step.step_id].entity_id
            assert step.target.id is not None
        assert result.outcomes["root"].entity_id == "r-0001"
        assert result.outcomes["organization"].entity_id.startswith("o-")
        assert result.outcomes["trail"].entity_id.endswith(":trail/OrganizationTrail")

    @pytest.mark.asyncio
    async def test_empty_chain(self, no_sleep, policies):
        result = await _orchestrator(InMemoryControlPlane(), no_sleep, policies).run([])
        assert result.outcomes == {}


class TestFailFast:
    @pytest.mark.asyncio
    async def test_external_failure_skips_remaining(self, sdlc_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane(failures={"create_account": "EMAIL_ALREADY_EXISTS"})
        result = await _orchestrator(control_plane, no_sleep, policies).run(_plan(sdlc_tree))

        statuses = {step_id: o.status for step_id, o in result.outcomes.items()}
        assert statuses == {
            "organization": StepStatus.complete,
            "root": StepStatus.complete,
            "trail-bucket": StepStatus.complete,
            "trail": StepStatus.complete,
            "ou:SDLC": StepStatus.complete,
            "account:SDLC/Account1": StepStatus.failed,
            "account:SDLC/Account2": StepStatus.skipped,
            "ou:Prod": StepStatus.skipped,
            "account:Prod/Account3": StepStatus.skipped,
        }
        failure = result.first_failure
        assert failure.step_id == "account:SDLC/Account1"
        assert failure.error == "EMAIL_ALREADY_EXISTS"
        assert failure.error_kind == "external_failure"
        assert _actions(control_plane).count("create_account") == 1
        assert _actions(control_plane).count("create_organizational_unit") == 1
        assert not result.complete

    @pytest.mark.asyncio
    async def test_dispatch_rejection(self, sdlc_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane(
            rejections={"create_organizational_unit": "DuplicateOrganizationalUnitException"}
        )
        result = await _orchestrator(control_plane, no_sleep, policies).run(_plan(sdlc_tree))

        failure = result.first_failure
        assert failure.step_id == "ou:SDLC"
        assert failure.error_kind == "dispatch"
        assert "create_account" not in _actions(control_plane)
        assert len(result.skipped) == 4

    @pytest.mark.asyncio
    async def test_poll_timeout_is_distinct(self, single_account_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane(pending_polls=10)
        result = await _orchestrator(control_plane, no_sleep, policies).run(_plan(single_account_tree))

        failure = result.first_failure
        assert failure.step_id == "account:Dev/app"
        assert failure.error_kind == "poll_timeout"
        assert failure.resumption_token is not None
        assert len(control_plane.polls) == 3


class TestResume:
    @pytest.mark.asyncio
    async def test_rerun_of_complete_result_dispatches_nothing(self, sdlc_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane()
        first = await _orchestrator(control_plane, no_sleep, policies).run(_plan(sdlc_tree))
        calls_before = len(control_plane.calls)

        steps = _plan(sdlc_tree)
        second = await _orchestrator(control_plane, no_sleep, policies).run(steps, prior=first)

        assert second.complete
        assert len(control_plane.calls) == calls_before
        assert second.entity_ids() == first.entity_ids()
        assert steps[-1].target.id == first.outcomes["account:Prod/Account3"].entity_id

    @pytest.mark.asyncio
    async def test_retry_after_failure_continues_from_failed_step(
        self, sdlc_tree, no_sleep, policies
    ):
        failing = InMemoryControlPlane(failures={"create_account": "ACCOUNT_LIMIT_EXCEEDED"})
        first = await _orchestrator(failing, no_sleep, policies).run(_plan(sdlc_tree))

        healthy = InMemoryControlPlane()
        second = await _orchestrator(healthy, no_sleep, policies).run(_plan(sdlc_tree), prior=first)

        assert second.complete
        assert _actions(healthy)[0] == "create_account"
        assert "create_organization" not in _actions(healthy)
        move = next(c for c in healthy.calls if c.action == "move_account")
        assert move.parameters["DestinationParentId"] == first.outcomes["ou:SDLC"].entity_id

    @pytest.mark.asyncio
    async def test_timed_out_job_resumes_token(self, single_account_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane(pending_polls=4)
        first = await _orchestrator(control_plane, no_sleep, policies).run(
            _plan(single_account_tree)
        )
        token = first.outcomes["account:Dev/app"].resumption_token

        second = await _orchestrator(control_plane, no_sleep, policies).run(
            _plan(single_account_tree), prior=first
        )

        assert second.complete
        assert _actions(control_plane).count("create_account") == 1
        assert control_plane.polls[3:] == [token, token]
        assert second.outcomes["account:Dev/app"].error is None

    @pytest.mark.asyncio
    async def test_failed_follow_up_resumes_after_created_entity(
        self, single_account_tree, no_sleep, policies
    ):
        first_plane = InMemoryControlPlane(
            rejections={"register_delegated_administrator": "AccountAlreadyRegisteredException"}
        )
        first = await _orchestrator(first_plane, no_sleep, policies).run(_plan(single_account_tree))

        outcome = first.outcomes["account:Dev/app"]
        assert outcome.status is StepStatus.failed
        assert outcome.entity_id is not None
        assert outcome.completed_follow_ups == 1

        second_plane = InMemoryControlPlane()
        steps = _plan(single_account_tree)
        second = await _orchestrator(second_plane, no_sleep, policies).run(steps, prior=first)

        assert second.complete
        assert _actions(second_plane) == ["register_delegated_administrator"]
        assert second_plane.calls[0].parameters["AccountId"] == outcome.entity_id
        assert steps[-1].target.id == outcome.entity_id

    @pytest.mark.asyncio
    async def test_partial_chain_requires_complete_predecessor(self, sdlc_tree, no_sleep, policies):
        steps = _plan(sdlc_tree)[4:]
        with pytest.raises(ValidationError, match="trail"):
            await _orchestrator(InMemoryControlPlane(), no_sleep, policies).run(steps)


class TestDeadline:
    """Runs given a deadline suspend with the current step pending."""

    @staticmethod
    def _bounded(control_plane, sleep, now):
        dispatcher = OperationDispatcher(control_plane)
        policies = {family: PollPolicy(interval=10, max_attempts=90) for family in ResourceFamily}
        poller = CompletionPoller(dispatcher, sleep=sleep, clock=lambda: now)
        return TreeOrchestrator(dispatcher, poller, policies, clock=lambda: now)

    @pytest.mark.asyncio
    async def test_suspends_with_token_then_resumes(self, single_account_tree, no_sleep, policies):
        control_plane = InMemoryControlPlane(pending_polls=2)
        first = await self._bounded(control_plane, no_sleep, 100.0).run(
            _plan(single_account_tree), deadline=105.0
        )

        outcome = first.outcomes["account:Dev/app"]
        assert outcome.status is StepStatus.pending
        assert outcome.resumption_token is not None
        assert outcome.error is None
        assert first.first_failure is None
        assert not first.complete
        assert first.skipped == []
        assert len(control_plane.polls) == 1
        no_sleep.assert_not_awaited()

        second = await _orchestrator(control_plane, no_sleep, policies).run(
            _plan(single_account_tree), prior=first
        )

        assert second.complete
        assert _actions(control_plane).count("create_account") == 1
        assert control_plane.polls[1:] == [outcome.resumption_token] * 2

    @pytest.mark.asyncio
    async def test_passed_deadline_dispatches_nothing(self, single_account_tree, no_sleep):
        control_plane = InMemoryControlPlane()
        checkpoint = AsyncMock(return_value=None)
        orchestrator = self._bounded(control_plane, no_sleep, 200.0)
        orchestrator._checkpoint_hook = checkpoint

        result = await orchestrator.run(_plan(single_account_tree), deadline=105.0)

        assert control_plane.calls == []
        assert result.summary()["pending"] == len(result.outcomes)
        checkpoint.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_skips_cleared_on_suspended_resume(
        self, single_account_tree, no_sleep, policies
    ):
        failed = await _orchestrator(
            InMemoryControlPlane(rejections={"create_organizational_unit": "Throttled"}),
            no_sleep,
            policies,
        ).run(_plan(single_account_tree))
        assert failed.skipped == ["account:Dev/app"]

        control_plane = InMemoryControlPlane(pending_polls=5)
        second = await self._bounded(control_plane, no_sleep, 100.0).run(
            _plan(single_account_tree), prior=failed, deadline=105.0
        )

        assert second.skipped == []
        assert second.first_failure is None
        assert second.outcomes["account:Dev/app"].status is StepStatus.pending


class TestCheckpoints:
    @pytest.mark.asyncio
    async def test_sync_checkpoint_sees_progress(self, single_account_tree, no_sleep, policies):
        snapshots = []
        orchestrator = _orchestrator(
            InMemoryControlPlane(pending_polls=1),
            no_sleep,
            policies,
            checkpoint=lambda result: snapshots.append(result.model_copy(deep=True)),
        )
        result = await orchestrator.run(_plan(single_account_tree))

        assert result.complete
        pending = [
            s for s in snapshots if s.outcomes["account:Dev/app"].status is StepStatus.pending
        ]
        assert any(s.outcomes["account:Dev/app"].resumption_token for s in pending)
        assert snapshots[-1].complete

    @pytest.mark.asyncio
    async def test_async_checkpoint_awaited(self, single_account_tree, no_sleep, policies):
        checkpoint = AsyncMock(return_value=None)
        await _orchestrator(InMemoryControlPlane(), no_sleep, policies, checkpoint=checkpoint).run(
            _plan(single_account_tree)
        )
        assert checkpoint.await_count > 0


class TestSingleRequests:
    @pytest.mark.asyncio
    async def test_delete_of_uncreated_entity_is_noop(self, no_sleep, policies):
        control_plane = InMemoryControlPlane()
        step = step_from_request(
            ProvisioningRequest.from_event({"requestKind": "Delete", "entityKind": "Account"}),
            region="us-east-1",
        )
        result = await _orchestrator(control_plane, no_sleep, policies).run([step])

        assert result.complete
        assert control_plane.calls == []
        assert result.to_response(step.step_id) == {"complete": True}

    @pytest.mark.asyncio
    async def test_update_keeps_prior_id(self, no_sleep, policies):
        step = step_from_request(
            ProvisioningRequest.from_event(
                {
                    "requestKind": "Update",
                    "entityKind": "Account",
                    "parameters": {"Email": "a@b.c", "AccountName": "a"},
                    "priorPhysicalId": "123456789012",
                }
            ),
            region="us-east-1",
        )
        result = await _orchestrator(InMemoryControlPlane(), no_sleep, policies).run([step])

        assert result.to_response(step.step_id) == {"complete": True, "entityId": "123456789012"}


class TestValidation:
    def test_verify_chain_rejects_broken_link(self, sdlc_tree):
        steps = _plan(sdlc_tree)
        with pytest.raises(ValidationError, match="must follow"):
            verify_chain([steps[0], steps[2]])

    @pytest.mark.asyncio
    async def test_missing_poll_policy(self, single_account_tree, no_sleep):
        with pytest.raises(ConfigurationError):
            await _orchestrator(InMemoryControlPlane(), no_sleep, {}).run(_plan(single_account_tree))
