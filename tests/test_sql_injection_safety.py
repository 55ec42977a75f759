from conftest import auth_headers


def test_job_id_path_injection_is_just_a_missing_job(client, make_job):
    make_job(user_id="user-1", status="queued")

    resp = client.get("/jobs/1' OR '1'='1", headers=auth_headers("user-1"))
    assert resp.status_code == 404


def test_cancel_injection_does_not_touch_other_jobs(client, make_job, get_job):
    job_id = make_job(user_id="user-1", status="queued")

    resp = client.post("/jobs/x'; UPDATE extraction_jobs SET status='cancelled';--/cancel", headers=auth_headers("user-1"))
    assert resp.status_code == 404
    assert get_job(job_id).status == "queued"


def test_kind_injection_returns_422(client):
    resp = client.post("/jobs", json={"kind": "invoice' OR 1=1--"}, headers=auth_headers("user-1"))
    assert resp.status_code == 422


def test_worker_query_params_injection_returns_422(client):
    resp = client.get("/extraction-worker?max_jobs=1; DROP TABLE extraction_jobs;--")
    assert resp.status_code == 422


def test_worker_user_filter_is_bound_not_interpolated(client, make_job, get_job):
    job_id = make_job(user_id="user-1", status="created")

    resp = client.get("/extraction-worker", params={"user_id": "x' OR '1'='1"})
    assert resp.status_code == 200
    assert resp.json()["processed"] == 0
    assert get_job(job_id).status == "created"
