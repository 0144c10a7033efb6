"""
Unit Tests for GhostFixEngine

Runs the real error store and workspace with millisecond timers and a
scripted fix requester.
"""
import asyncio

import pytest

from app.services.ghost_fix_engine import GhostFixConfig, GhostFixEngine, GhostFixStatus
from app.services.preview_state import PreviewError, PreviewErrorStore, PreviewWorkspace
from mocks.mock_fix_requester import MockFixRequester, file_fix

CONFIG = GhostFixConfig(
    max_attempts=3,
    debounce_seconds=0.01,
    verify_timeout_seconds=0.05,
    success_display_seconds=0.05,
)

BROKEN_APP = "export default function App() { return <div>{items.map(i => i)}</div> }"
FIXED_APP = "export default function App() { return <div>ok</div> }"


async def wait_for(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def errors():
    return PreviewErrorStore()


@pytest.fixture
def workspace():
    return PreviewWorkspace({"src/App.tsx": BROKEN_APP})


@pytest.fixture
def requester():
    return MockFixRequester()


@pytest.fixture
async def engine(errors, workspace, requester):
    engine = GhostFixEngine(errors, workspace, requester, config=CONFIG, name="project-1")
    yield engine
    engine.dispose()


def report(errors, message="TypeError: items is undefined"):
    errors.add_error(PreviewError(message=message, line=1, col=42))


class TestHandleError:
    """Scheduling rules"""

    async def test_no_files_means_nothing_to_fix(self, errors, requester):
        engine = GhostFixEngine(errors, PreviewWorkspace(), requester, config=CONFIG)
        report(errors)

        engine.handle_error()
        await asyncio.sleep(0.03)

        assert engine.status == GhostFixStatus.IDLE
        assert requester.call_count == 0

    async def test_burst_of_errors_is_debounced_into_one_attempt(self, engine, errors, requester):
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        for i in range(5):
            report(errors, f"error {i}")
            engine.handle_error()

        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)

        assert requester.call_count == 1
        assert requester.requests[0].error.message == "error 4"

    async def test_no_concurrent_attempts(self, engine, errors, requester):
        requester.gate = asyncio.Event()
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.FIXING)

        for _ in range(5):
            report(errors)
            engine.handle_error()
        assert engine.retry() is False
        await asyncio.sleep(0.03)

        assert requester.call_count == 1
        requester.gate.set()
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)
        assert requester.call_count == 1


class TestFixAttempt:
    """Request building and applying files"""

    async def test_fix_request_contents(self, engine, errors, requester):
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        errors.add_error(PreviewError(message="useState is not defined", is_build_error=True, stack="at App", line=3, col=7))
        engine.handle_error()
        await wait_for(lambda: requester.call_count == 1)

        request = requester.requests[0]
        assert request.error.message == "useState is not defined"
        assert request.error.is_build_error is True
        assert request.error.line == 3
        assert request.files == {"src/App.tsx": BROKEN_APP}
        assert request.previous_attempts == []
        assert "Error category: package-missing" in request.classification_context

    async def test_fix_applies_files_and_clears_errors(self, engine, errors, workspace, requester):
        applied = []
        engine.on_files_applied = applied.append
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()

        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)
        await engine.fix_task

        assert workspace.files["src/App.tsx"] == FIXED_APP
        assert errors.errors == ()
        assert engine.attempt_count == 1
        assert applied == [{"src/App.tsx": FIXED_APP}]

    async def test_response_without_file_actions_fails_attempt(self, engine, errors, workspace, requester):
        requester.responses = ["I could not find anything to change."]
        report(errors)
        engine.handle_error()

        await wait_for(lambda: requester.call_count == 1 and engine.fix_task.done())

        assert engine.status == GhostFixStatus.IDLE
        assert workspace.files["src/App.tsx"] == BROKEN_APP
        assert len(errors.errors) == 1
        assert engine.attempt_count == 1
        assert [a.error for a in engine.history] == ["TypeError: items is undefined"]

    async def test_requester_error_fails_attempt(self, engine, errors, requester):
        requester.responses = [RuntimeError("model unavailable")]
        report(errors)
        engine.handle_error()

        await wait_for(lambda: requester.call_count == 1 and engine.fix_task.done())

        assert engine.status == GhostFixStatus.IDLE
        assert len(engine.history) == 1

    async def test_last_attempt_without_files_fails_engine(self, errors, workspace, requester):
        engine = GhostFixEngine(errors, workspace, requester, config=GhostFixConfig(
            max_attempts=1, debounce_seconds=0.01, verify_timeout_seconds=0.05, success_display_seconds=0.05,
        ))
        requester.responses = ["nothing"]
        report(errors)
        engine.handle_error()

        await wait_for(lambda: engine.status == GhostFixStatus.FAILED)
        engine.dispose()


class TestVerification:
    """Dual-trigger verification"""

    async def test_healthy_preview_means_success(self, engine, errors, requester):
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)

        errors.set_healthy(True)

        assert engine.status == GhostFixStatus.SUCCESS
        assert engine.history == []
        await wait_for(lambda: engine.status == GhostFixStatus.IDLE)

    async def test_new_error_means_failure_and_automatic_retry(self, engine, errors, requester):
        requester.responses = [file_fix("src/App.tsx", FIXED_APP), file_fix("src/App.tsx", FIXED_APP + "\n")]
        report(errors, "first error")
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)

        report(errors, "second error")

        assert len(engine.history) == 1
        assert engine.history[0].error == "first error"
        await wait_for(lambda: requester.call_count == 2 and engine.status == GhostFixStatus.VERIFYING)
        assert requester.requests[1].previous_attempts[0].error == "first error"
        assert requester.requests[1].error.message == "second error"

    async def test_timeout_with_healthy_preview_is_success(self, engine, errors, requester):
        errors.set_healthy(True)
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)

        await wait_for(lambda: engine.status == GhostFixStatus.SUCCESS)

    async def test_timeout_without_health_signal_is_failure(self, engine, errors, requester):
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)

        await wait_for(lambda: len(engine.history) == 1)

        # No outstanding errors, so the automatic retry has nothing to fix
        await asyncio.sleep(0.03)
        assert engine.status == GhostFixStatus.IDLE
        assert requester.call_count == 1

    async def test_decision_is_made_once(self, engine, errors, requester):
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)

        errors.set_healthy(True)
        report(errors, "late error")
        await asyncio.sleep(0.08)

        assert engine.history == []
        assert engine.status in (GhostFixStatus.SUCCESS, GhostFixStatus.IDLE)


class TestAttemptLimit:
    """max_attempts, failed state and manual retry"""

    async def test_fails_after_max_attempts_until_manual_retry(self, engine, errors, requester):
        requester.responses = [file_fix("src/App.tsx", f"{FIXED_APP}// {i}") for i in range(4)]
        report(errors, "error 0")
        engine.handle_error()

        for attempt in range(1, 4):
            await wait_for(lambda: requester.call_count == attempt and engine.status == GhostFixStatus.VERIFYING)
            report(errors, f"error {attempt}")

        assert engine.status == GhostFixStatus.FAILED
        assert engine.attempt_count == 3
        assert len(engine.history) == 3

        engine.handle_error()
        await asyncio.sleep(0.03)
        assert engine.status == GhostFixStatus.FAILED
        assert requester.call_count == 3

        assert engine.retry() is True
        assert engine.history == []
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)
        assert engine.attempt_count == 1
        assert requester.call_count == 4
        assert requester.requests[3].previous_attempts == []

    async def test_retry_without_errors_does_nothing(self, engine, requester):
        assert engine.retry() is False
        assert requester.call_count == 0


class TestLifecycle:
    """dispose, listeners and snapshot"""

    async def test_dispose_while_fixing(self, engine, errors, requester):
        requester.gate = asyncio.Event()
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.FIXING)
        task = engine.fix_task

        engine.dispose()
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()
        assert engine.status == GhostFixStatus.IDLE
        requester.gate.set()
        await asyncio.sleep(0.03)
        assert engine.status == GhostFixStatus.IDLE

    async def test_dispose_while_verifying_stops_timeout(self, engine, errors, requester):
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)

        engine.dispose()
        await asyncio.sleep(0.08)

        assert engine.status == GhostFixStatus.IDLE
        assert engine.history == []

    async def test_dispose_is_safe_when_idle(self, engine):
        engine.dispose()
        engine.dispose()
        assert engine.status == GhostFixStatus.IDLE

    async def test_status_listener(self, engine, errors, requester):
        seen = []
        unsubscribe = engine.add_status_listener(seen.append)
        requester.responses = [file_fix("src/App.tsx", FIXED_APP)]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: engine.status == GhostFixStatus.VERIFYING)
        errors.set_healthy(True)
        unsubscribe()
        await wait_for(lambda: engine.status == GhostFixStatus.IDLE)

        assert seen == [GhostFixStatus.FIXING, GhostFixStatus.VERIFYING, GhostFixStatus.SUCCESS]

    async def test_snapshot(self, engine, errors, requester):
        requester.responses = ["no files"]
        report(errors)
        engine.handle_error()
        await wait_for(lambda: requester.call_count == 1 and engine.fix_task.done())

        assert engine.snapshot() == {
            "status": "idle",
            "attempts": 1,
            "max_attempts": 3,
            "history": [{"error": "TypeError: items is undefined", "attempt_number": 1}],
        }
