import pytest

from app.db.models.result import InvoiceResult
from app.repositories.job import JobRepository
from app.services.dispatcher import build_job_service
from app.services.exceptions import JobNotFoundError
from app.services.extraction_services import ExtractionPipeline
from app.services.storage_services import bucket_for
from app.schemas.job import JobKind

from conftest import INVOICE_JSON


@pytest.mark.parametrize("status", ["created", "queued", "processing", "failed"])
def test_cancel_from_cancelable_states(db, make_job, get_job, status):
    job_id = make_job(status=status)

    result = build_job_service(db).cancel_job(job_id, "user-1", db)

    assert result.cancelled is True
    assert result.job.status == "cancelled"
    job = get_job(job_id)
    assert job.status == "cancelled"
    assert job.finished_at is not None
    assert job.next_retry_at is None


@pytest.mark.parametrize("status", ["done", "needs_review", "out_of_quota", "cancelled"])
def test_cancel_is_noop_for_finished_jobs(db, make_job, get_job, status):
    job_id = make_job(status=status)

    result = build_job_service(db).cancel_job(job_id, "user-1", db)

    assert result.cancelled is False
    assert result.job.status == status
    assert get_job(job_id).status == status


def test_cancel_requires_ownership(db, make_job, get_job):
    job_id = make_job(user_id="owner", status="queued")

    with pytest.raises(JobNotFoundError):
        build_job_service(db).cancel_job(job_id, "intruder", db)
    assert get_job(job_id).status == "queued"


def test_cancelled_queued_job_cannot_be_claimed(db, make_job):
    job_id = make_job(status="queued")
    service = build_job_service(db)
    service.cancel_job(job_id, "user-1", db)

    assert service.claim(job_id, db) is None


def test_cancel_during_model_call_wins(db, session_factory, make_job, get_job, store, model, cache):
    job_id = make_job(status="queued")
    job = get_job(job_id)
    store.put(bucket_for(JobKind.INVOICE), job.storage_path, b"invoice-bytes")

    def cancel_then_answer(model_job_id):
        with session_factory() as other:
            assert JobRepository(other).cancel(model_job_id)
            other.commit()
        return INVOICE_JSON

    model.respond(b"invoice-bytes", cancel_then_answer)

    claimed = build_job_service(db).claim(job_id, db)
    outcome = ExtractionPipeline(db, store=store, model=model, cache=cache).run(claimed)

    assert outcome.status == "cancelled"
    assert get_job(job_id).status == "cancelled"
    with session_factory() as s:
        assert s.query(InvoiceResult).filter(InvoiceResult.job_id == job_id).count() == 0
