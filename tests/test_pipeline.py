import threading
from datetime import datetime, timedelta, timezone

import pytest

from app.core.config import settings
from app.db.models.location import CallsheetLocation
from app.db.models.result import CallsheetResult, InvoiceResult
from app.db.models.usage_event import AiUsageEvent
from app.schemas.job import JobKind
from app.services.dispatcher import build_job_service
from app.services.extraction_services import INVALID_RESULT_ERROR, ExtractionPipeline
from app.services.storage_services import bucket_for

from conftest import CALLSHEET_JSON, FakeGeocoder


@pytest.fixture
def queued_job(make_job, get_job, store):
    """Queue a job whose document is already uploaded."""

    def _queued(kind="invoice", data=b"document-bytes", user_id="user-1", **fields):
        job_id = make_job(user_id=user_id, kind=kind, status="queued", **fields)
        if data is not None:
            store.put(bucket_for(JobKind(kind)), get_job(job_id).storage_path, data)
        return job_id

    return _queued


@pytest.fixture
def run_job(db, store, model, cache):
    def _run(job_id, geocoder=None, skip_geocode=False):
        claimed = build_job_service(db).claim(job_id, db)
        assert claimed is not None
        pipeline = ExtractionPipeline(
            db, store=store, model=model, geocoder=geocoder, cache=cache, skip_geocode=skip_geocode
        )
        return pipeline.run(claimed)

    return _run


def test_invoice_success(queued_job, run_job, get_job, session_factory, model):
    job_id = queued_job()

    outcome = run_job(job_id)

    assert outcome.status == "success"
    assert outcome.cached is False
    job = get_job(job_id)
    assert job.status == "done"
    assert job.finished_at is not None
    assert job.last_error is None
    with session_factory() as s:
        row = s.query(InvoiceResult).filter(InvoiceResult.job_id == job_id).one()
        assert row.total_amount == pytest.approx(123.45)
        assert row.currency == "EUR"
        assert row.vendor_name == "Fuel Co"
        assert s.query(CallsheetLocation).filter(CallsheetLocation.job_id == job_id).count() == 0
    assert model.calls[0]["job_id"] == job_id
    assert model.calls[0]["mime_type"] == "application/pdf"


def test_success_records_usage_at_claim_time(queued_job, run_job, get_job, session_factory):
    job_id = queued_job()

    run_job(job_id)

    with session_factory() as s:
        events = s.query(AiUsageEvent).filter(AiUsageEvent.job_id == job_id).all()
        assert len(events) == 1
        assert events[0].status == "done"
        assert events[0].user_id == "user-1"
        assert events[0].run_at == get_job(job_id).processing_started_at


def test_callsheet_success_with_geocoding(queued_job, run_job, session_factory, model):
    model.default = CALLSHEET_JSON
    geocoder = FakeGeocoder({
        "Calle Mayor 1, Madrid": {
            "formatted_address": "Calle Mayor, 1, 28013 Madrid, Spain",
            "lat": 40.4168,
            "lng": -3.7038,
            "place_id": "abc",
            "quality": "ROOFTOP",
        }
    })
    job_id = queued_job(kind="callsheet")

    outcome = run_job(job_id, geocoder=geocoder)

    assert outcome.status == "success"
    with session_factory() as s:
        result = s.query(CallsheetResult).filter(CallsheetResult.job_id == job_id).one()
        assert result.date_value == "2025-03-14"
        assert result.project_value == "Night Shift"
        assert result.producer_value == "Acme Films"
        locations = s.query(CallsheetLocation).filter(
            CallsheetLocation.job_id == job_id
        ).order_by(CallsheetLocation.id).all()
        assert [loc.address_raw for loc in locations] == ["Calle Mayor 1, Madrid", "Plaza de Espana, Madrid"]
        assert locations[0].lat == pytest.approx(40.4168)
        assert locations[0].geocode_quality == "ROOFTOP"
        assert locations[1].lat is None


def test_geocoder_failure_keeps_raw_addresses(queued_job, run_job, session_factory, model):
    model.default = CALLSHEET_JSON
    job_id = queued_job(kind="callsheet")

    outcome = run_job(job_id, geocoder=FakeGeocoder(fail=True))

    assert outcome.status == "success"
    with session_factory() as s:
        locations = s.query(CallsheetLocation).filter(CallsheetLocation.job_id == job_id).all()
        assert len(locations) == 2
        assert all(loc.lat is None for loc in locations)


def test_skip_geocode(queued_job, run_job, model):
    model.default = CALLSHEET_JSON
    geocoder = FakeGeocoder()
    job_id = queued_job(kind="callsheet")

    assert run_job(job_id, geocoder=geocoder, skip_geocode=True).status == "success"
    assert geocoder.calls == []


def test_missing_document_schedules_retry(queued_job, run_job, get_job):
    job_id = queued_job(data=None)

    outcome = run_job(job_id)

    assert outcome.status == "failed"
    assert outcome.next_retry_at is not None
    job = get_job(job_id)
    assert job.status == "failed"
    assert job.last_error.startswith("Failed to download document")
    assert job.next_retry_at is not None


def test_missing_document_without_retries_left(queued_job, run_job, get_job):
    job_id = queued_job(data=None, retry_count=3)

    outcome = run_job(job_id)

    assert outcome.status == "failed"
    assert outcome.next_retry_at is None
    assert get_job(job_id).next_retry_at is None


def test_oversized_document_fails_permanently(queued_job, run_job, get_job, model, monkeypatch):
    monkeypatch.setattr(settings, "MAX_DOCUMENT_BYTES", 10)
    job_id = queued_job(data=b"x" * 100)

    outcome = run_job(job_id)

    assert outcome.status == "failed"
    job = get_job(job_id)
    assert job.status == "failed"
    assert job.last_error.startswith("file_too_large:")
    assert job.next_retry_at is None
    assert model.calls == []


def test_unparseable_model_output_fails_permanently(queued_job, run_job, get_job, model):
    model.default = "I could not read this document."
    job_id = queued_job()

    outcome = run_job(job_id)

    assert outcome.status == "failed"
    assert outcome.error == INVALID_RESULT_ERROR
    job = get_job(job_id)
    assert job.last_error == INVALID_RESULT_ERROR
    assert job.next_retry_at is None


def test_model_error_schedules_retry(queued_job, run_job, get_job, model):
    model.default = RuntimeError("model unavailable")
    job_id = queued_job()

    outcome = run_job(job_id)

    assert outcome.status == "failed"
    job = get_job(job_id)
    assert job.last_error == "model unavailable"
    assert job.next_retry_at is not None


def test_invalid_extraction_needs_review(queued_job, run_job, get_job, session_factory, model):
    model.default = '{"totalAmount": -5, "currency": "EUR"}'
    job_id = queued_job()

    outcome = run_job(job_id)

    assert outcome.status == "needs_review"
    job = get_job(job_id)
    assert job.status == "needs_review"
    assert job.needs_review_reason.startswith("invalid_invoice_extraction:")
    with session_factory() as s:
        assert s.query(InvoiceResult).filter(InvoiceResult.job_id == job_id).count() == 0
        assert s.query(AiUsageEvent).filter(AiUsageEvent.job_id == job_id).count() == 0


def test_existing_result_short_circuits(queued_job, run_job, get_job, session_factory, model):
    job_id = queued_job(data=None)
    with session_factory() as s:
        s.add(InvoiceResult(job_id=job_id, total_amount=9.99, currency="EUR"))
        s.commit()

    outcome = run_job(job_id)

    assert outcome.status == "success"
    assert outcome.cached is True
    assert get_job(job_id).status == "done"
    assert model.calls == []


def test_out_of_quota(queued_job, run_job, get_job, add_usage, model):
    add_usage("user-1", 5)
    job_id = queued_job()

    outcome = run_job(job_id)

    assert outcome.status == "out_of_quota"
    job = get_job(job_id)
    assert job.status == "out_of_quota"
    assert job.needs_review_reason.startswith("monthly_quota_exceeded:5/5:")
    assert model.calls == []


def test_bypass_still_records_usage(queued_job, run_job, get_job, add_usage, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "BYPASS_AI_LIMITS", True)
    add_usage("user-1", 9)
    job_id = queued_job()

    outcome = run_job(job_id)

    assert outcome.status == "success"
    assert get_job(job_id).status == "done"
    with session_factory() as s:
        assert s.query(AiUsageEvent).filter(AiUsageEvent.job_id == job_id).count() == 1
        assert s.query(AiUsageEvent).filter(AiUsageEvent.user_id == "user-1").count() == 10


def test_extraction_cache_reused_for_same_document(make_job, get_job, store, run_job, session_factory, model):
    path = "user-1/shared/invoice.pdf"
    store.put(bucket_for(JobKind.INVOICE), path, b"same-bytes")
    first = make_job(status="queued", storage_path=path)
    second = make_job(status="queued", storage_path=path)

    assert run_job(first).cached is False
    outcome = run_job(second)

    assert outcome.status == "success"
    assert outcome.cached is True
    assert len(model.calls) == 1
    assert get_job(second).status == "done"
    with session_factory() as s:
        assert s.query(InvoiceResult).filter(InvoiceResult.job_id == second).count() == 1
        # Only the model call is billed
        assert s.query(AiUsageEvent).count() == 1


def test_job_cancelled_before_run_is_left_alone(queued_job, db, store, model, cache, get_job, session_factory):
    from app.repositories.job import JobRepository

    job_id = queued_job()
    claimed = build_job_service(db).claim(job_id, db)
    with session_factory() as other:
        JobRepository(other).cancel(job_id)
        other.commit()

    outcome = ExtractionPipeline(db, store=store, model=model, cache=cache).run(claimed)

    assert outcome.status == "cancelled"
    assert get_job(job_id).status == "cancelled"
    assert model.calls == []


def test_locations_geocoded_concurrently(queued_job, run_job, session_factory, model):
    model.default = CALLSHEET_JSON
    both_in_flight = threading.Barrier(2, timeout=5)

    class MeetingGeocoder(FakeGeocoder):
        def geocode(self, address):
            # Fails unless both addresses are being geocoded at the same time
            both_in_flight.wait()
            return {"lat": 1.0, "lng": 2.0, "quality": "APPROXIMATE"}

    job_id = queued_job(kind="callsheet")

    assert run_job(job_id, geocoder=MeetingGeocoder()).status == "success"
    with session_factory() as s:
        locations = s.query(CallsheetLocation).filter(
            CallsheetLocation.job_id == job_id
        ).order_by(CallsheetLocation.id).all()
        assert [loc.address_raw for loc in locations] == ["Calle Mayor 1, Madrid", "Plaza de Espana, Madrid"]
        assert all(loc.lat == pytest.approx(1.0) for loc in locations)


def test_stuck_sweep_during_run_is_reported_as_failed(queued_job, db, store, model, cache, get_job, session_factory):
    job_id = queued_job()
    claimed = build_job_service(db).claim(job_id, db)
    with session_factory() as other:
        later = datetime.now(timezone.utc) + timedelta(minutes=11)
        assert build_job_service(other).recover_stuck_jobs(other, now=later) == [job_id]

    outcome = ExtractionPipeline(db, store=store, model=model, cache=cache).run(claimed)

    assert outcome.status == "failed"
    assert outcome.error == "Job stuck in processing, will retry"
    assert outcome.next_retry_at is not None
    assert get_job(job_id).status == "failed"
    with session_factory() as s:
        assert s.query(InvoiceResult).filter(InvoiceResult.job_id == job_id).count() == 0
        assert s.query(AiUsageEvent).filter(AiUsageEvent.job_id == job_id).count() == 0
