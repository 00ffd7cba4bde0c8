import json

import pytest

from directory.core import config
from directory.core.models import RunRecord, RunState
from directory.jobs import run_refresh
from directory.jobs.queue import RefreshQueue


def setup_function(function):
    config.get_settings.cache_clear()


def teardown_function(function):
    config.get_settings.cache_clear()


class FakeRuntime:
    def __init__(self, success=True):
        self.requests = []
        self.shut_down = False

        def runner(request, run_id, on_progress):
            self.requests.append(request)
            return RunRecord(run_id=run_id, trigger=request.trigger, state=RunState.COMPLETED, success=success)

        self.queue = RefreshQueue(runner, sleep=lambda _: None)

    def shutdown(self):
        self.shut_down = True
        self.queue.shutdown()


def test_run_command_enqueues_and_waits(monkeypatch, capsys):
    runtime = FakeRuntime()
    monkeypatch.setattr(run_refresh, "build_runtime", lambda: runtime)

    exit_code = run_refresh.main(["run", "--sources", "maps, punch", "--regions", "Lagos,Kano", "--full-crawl"])

    assert exit_code == 0
    request = runtime.requests[0]
    assert request.sources == ["maps", "punch"]
    assert request.regions == ["Lagos", "Kano"]
    assert request.full_crawl is True
    assert request.trigger == "cli"
    assert runtime.shut_down is True
    assert json.loads(capsys.readouterr().out)["state"] == "completed"


def test_run_command_reports_failed_runs(monkeypatch, capsys):
    runtime = FakeRuntime(success=False)
    monkeypatch.setattr(run_refresh, "build_runtime", lambda: runtime)

    assert run_refresh.main(["run"]) == 1
    assert runtime.requests[0].sources is None


def test_run_command_rejects_unknown_sources(monkeypatch):
    monkeypatch.setattr(run_refresh, "build_runtime", lambda: pytest.fail("runtime should not be built"))

    with pytest.raises(SystemExit) as exc:
        run_refresh.main(["run", "--sources", "instagram"])

    assert exc.value.code == 2
