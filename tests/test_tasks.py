"""Tests for the Celery drain task."""

from csvimport.workers.celery_app import celery_app
from csvimport.workers.scheduler import JobScheduler
from csvimport.workers.tasks import drain_csv_jobs, run_async


def test_run_async_returns_coroutine_result():
    async def answer():
        return 42

    assert run_async(answer()) == 42


def test_drain_task_reports_processed_jobs(monkeypatch):
    async def fake_drain(self):
        return 3

    monkeypatch.setattr(JobScheduler, "drain", fake_drain)

    result = drain_csv_jobs.apply().get()

    assert result == {"success": True, "jobs_processed": 3}


def test_drain_task_is_scheduled():
    schedule = celery_app.conf.beat_schedule["drain-csv-jobs"]
    assert schedule["task"] == drain_csv_jobs.name
