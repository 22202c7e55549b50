"""Tests for phaseflow/agents/command_worker.py — external program workers."""

import json
import sys

from phaseflow.agents.command_worker import CommandWorker, build_command_workers
from phaseflow.core.models import WorkerRequest


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def _request() -> WorkerRequest:
    return WorkerRequest(phase_name="backend-unit-tests", worker_role="tester", attempt=1, feedback=["add counts"])


class TestProcess:
    def test_request_sent_on_stdin(self):
        code = (
            "import json, sys; req = json.load(sys.stdin); "
            "print('Test plan for ' + req['phase_name'] + '. ' + req['feedback'][0] + '. Phase complete.')"
        )
        response = CommandWorker("tester", _python(code)).invoke(_request())
        assert response.error is None
        assert "Test plan for backend-unit-tests. add counts." in response.content

    def test_nonzero_exit_is_error(self):
        code = "import sys; sys.stderr.write('tests exploded'); sys.exit(1)"
        response = CommandWorker("tester", _python(code)).invoke(_request())
        assert response.error == "exit code 1: tests exploded"

    def test_timeout_is_error(self):
        worker = CommandWorker("tester", _python("import time; time.sleep(5)"), timeout_seconds=1)
        response = worker.invoke(_request())
        assert "timed out" in response.error
        assert worker.get_metrics()["total_errors"] == 1


class TestParseOutput:
    def setup_method(self):
        self.worker = CommandWorker("tester", "true")

    def test_plain_text(self):
        response = self.worker.parse_output("Phase complete.\n")
        assert response.content == "Phase complete.\n"
        assert response.structured is None

    def test_full_response(self):
        payload = {"content": "done", "structured": {"completed": True}}
        response = self.worker.parse_output(json.dumps(payload))
        assert response.role == "tester"
        assert response.content == "done"
        assert response.structured.completed is True

    def test_structured_payload(self):
        payload = {"completed": True, "test_results": {"passed": 3, "failed": 0}}
        response = self.worker.parse_output(json.dumps(payload))
        assert response.structured.test_results.passed == 3

    def test_invalid_response_shape_falls_back_to_text(self):
        text = json.dumps({"content": 5, "structured": "nope"})
        response = self.worker.parse_output(text)
        assert response.content == text
        assert response.structured is None

    def test_json_list_is_text(self):
        assert self.worker.parse_output("[1, 2]").content == "[1, 2]"


class TestBuildCommandWorkers:
    def test_one_per_role(self):
        workers = build_command_workers({"tester": "./t", "api-builder": "./a"}, timeout_seconds=5)
        assert [w.role for w in workers] == ["api-builder", "tester"]
        assert workers[1].timeout_seconds == 5
        assert workers[1].command == "./t"
