import pytest

from calendar_mcp.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError, match="queue_worker"):
        await worker.run_worker("missing")


def test_job_name_from_env(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.setenv("WORKER_JOB", " Job_Cleanup ")

    assert worker._resolve_job_name() == "job_cleanup"


@pytest.mark.asyncio
async def test_job_cleanup_shuts_down_assistant(monkeypatch):
    events = []

    class FakeQueueManager:
        async def recover(self):
            events.append("recover")

    class FakeMaintenance:
        async def clean_completed_jobs(self):
            events.append("clean")

    class FakeAssistant:
        queue_manager = FakeQueueManager()
        maintenance = FakeMaintenance()

        async def shutdown(self):
            events.append("shutdown")

    async def fake_build(config):
        return FakeAssistant(), None

    monkeypatch.setattr(worker, "build_assistant", fake_build)

    await worker.run_job_cleanup()

    assert events == ["recover", "clean", "shutdown"]
