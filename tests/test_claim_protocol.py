import threading
from datetime import datetime, timedelta, timezone

from app.repositories.job import JobRepository
from app.schemas.job import JobKind, JobStatus
from app.services.dispatcher import build_job_service


def test_claim_moves_queued_to_processing(db, make_job, get_job):
    job_id = make_job(status="queued")

    claimed = build_job_service(db).claim(job_id, db)

    assert claimed is not None
    assert claimed.id == job_id
    assert claimed.kind == JobKind.INVOICE
    assert claimed.processing_started_at is not None
    job = get_job(job_id)
    assert job.status == "processing"
    assert job.finished_at is None


def test_claim_refuses_non_queued(db, make_job):
    service = build_job_service(db)
    for status in ("created", "processing", "done", "failed", "cancelled"):
        job_id = make_job(status=status)
        assert service.claim(job_id, db) is None
    assert service.claim("no-such-job", db) is None


def test_second_claim_loses(db, make_job):
    job_id = make_job(status="queued")
    service = build_job_service(db)
    assert service.claim(job_id, db) is not None
    assert service.claim(job_id, db) is None


def test_concurrent_claims_have_one_winner(session_factory, make_job, get_job):
    job_id = make_job(status="queued")
    contenders = 10
    barrier = threading.Barrier(contenders)
    results = []
    lock = threading.Lock()

    def attempt():
        session = session_factory()
        try:
            service = build_job_service(session)
            barrier.wait()
            claimed = service.claim(job_id, session)
            with lock:
                results.append(claimed)
        finally:
            session.close()

    threads = [threading.Thread(target=attempt) for _ in range(contenders)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [r for r in results if r is not None]
    assert len(results) == contenders
    assert len(winners) == 1
    assert get_job(job_id).status == "processing"


def test_finish_only_from_processing(db, make_job, get_job):
    repo = JobRepository(db)
    queued = make_job(status="queued")
    assert repo.finish(queued, JobStatus.DONE) is False
    db.commit()
    assert get_job(queued).status == "queued"


def test_fetch_queued_is_fifo_and_skips_pending_paths(db, make_job):
    base = datetime.now(timezone.utc) - timedelta(minutes=10)
    newest = make_job(status="queued", created_at=base + timedelta(minutes=3))
    oldest = make_job(status="queued", created_at=base)
    middle = make_job(status="queued", created_at=base + timedelta(minutes=1))
    make_job(status="queued", storage_path="pending", created_at=base - timedelta(minutes=1))
    make_job(status="created", created_at=base - timedelta(minutes=2))

    ids = [job.id for job in JobRepository(db).fetch_queued(10)]
    assert ids == [oldest, middle, newest]

    assert [job.id for job in JobRepository(db).fetch_queued(2)] == [oldest, middle]


def test_fetch_queued_filters(db, make_job):
    invoice = make_job(status="queued", kind="invoice", user_id="a")
    callsheet = make_job(status="queued", kind="callsheet", user_id="b")
    repo = JobRepository(db)

    assert [j.id for j in repo.fetch_queued(10, kind=JobKind.CALLSHEET)] == [callsheet]
    assert [j.id for j in repo.fetch_queued(10, user_id="a")] == [invoice]
    assert [j.id for j in repo.fetch_queued(10, job_id=callsheet)] == [callsheet]


def test_recover_stuck_jobs(db, make_job, get_job):
    now = datetime.now(timezone.utc)
    retryable = make_job(status="processing", processing_started_at=now - timedelta(minutes=20), retry_count=1)
    exhausted = make_job(status="processing", processing_started_at=now - timedelta(minutes=20), retry_count=3)
    fresh = make_job(status="processing", processing_started_at=now - timedelta(minutes=2))

    recovered = build_job_service(db).recover_stuck_jobs(db, now=now)
    assert set(recovered) == {retryable, exhausted}

    job = get_job(retryable)
    assert job.status == "failed"
    assert job.last_error == "Job stuck in processing, will retry"
    assert job.next_retry_at is not None

    job = get_job(exhausted)
    assert job.status == "failed"
    assert job.last_error == "Job stuck in processing, exceeded max retries"
    assert job.next_retry_at is None

    assert get_job(fresh).status == "processing"


def test_requeue_due_retries(db, make_job, get_job):
    now = datetime.now(timezone.utc)
    due = make_job(status="failed", retry_count=0, next_retry_at=now - timedelta(seconds=5), last_error="boom")
    later = make_job(status="failed", retry_count=0, next_retry_at=now + timedelta(minutes=5))
    terminal = make_job(status="failed", retry_count=0, next_retry_at=None)
    exhausted = make_job(status="failed", retry_count=3, next_retry_at=now - timedelta(minutes=5))

    requeued = build_job_service(db).requeue_due_retries(db, now=now)
    assert requeued == [due]

    job = get_job(due)
    assert job.status == "queued"
    assert job.retry_count == 1
    assert job.last_error is None
    assert job.next_retry_at is None
    for job_id in (later, terminal, exhausted):
        assert get_job(job_id).status == "failed"
