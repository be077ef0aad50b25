import logging

from illusongs.services import scheduler as dispatcher


async def test_scheduler_disabled_by_default(monkeypatch):
    monkeypatch.setattr(dispatcher.settings, "GENERATION_DISPATCH_SECONDS", 0)
    dispatcher.start_scheduler()
    assert dispatcher.scheduler is None


async def test_scheduler_registers_one_interval_job(monkeypatch):
    monkeypatch.setattr(dispatcher.settings, "GENERATION_DISPATCH_SECONDS", 3600)
    dispatcher.start_scheduler()
    try:
        jobs = dispatcher.scheduler.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].max_instances == 1
        assert jobs[0].coalesce is True
    finally:
        dispatcher.stop_scheduler()
    assert dispatcher.scheduler is None


async def test_dispatch_tick_logs_failures(monkeypatch, caplog):
    monkeypatch.setattr(dispatcher.settings, "IMAGE_PROVIDER", "openrouter")
    monkeypatch.setattr(dispatcher.settings, "OPENROUTER_API_KEY", None)
    with caplog.at_level(logging.ERROR, logger=dispatcher.__name__):
        await dispatcher.job_dispatch_generation()
    assert "Scheduled generation dispatch failed" in caplog.text


async def test_dispatch_tick_runs_one_job(monkeypatch):
    calls = []

    async def fake_process(provider, storage):
        calls.append((provider, storage))
        return None

    monkeypatch.setattr(dispatcher, "build_provider_from_settings", lambda: "provider")
    monkeypatch.setattr(dispatcher, "process_next_job", fake_process)
    await dispatcher.job_dispatch_generation()
    assert len(calls) == 1 and calls[0][0] == "provider"
