# storedash/superadmin/routes.py
from __future__ import annotations

from flask import current_app, jsonify, request
from flask_login import current_user

from storedash.extensions import db
from storedash.services import jobs, tenants
from storedash.utils import as_bool, json_body, to_int
from . import superadmin_bp
from .guards import sa_only


# ---------------- Tenants ----------------
@superadmin_bp.get("/tenants")
@sa_only
def tenant_list():
    rows = tenants.list_tenants(request.args.get("q"))
    return jsonify({"data": [tenants.serialize(t) for t in rows]})


@superadmin_bp.post("/tenants")
@sa_only
def tenant_create():
    data = json_body()
    t = tenants.create_tenant(data.get("name"), data.get("slug"))
    db.session.commit()
    return jsonify(tenants.serialize(t)), 201


@superadmin_bp.get("/tenants/<int:tenant_id>")
@sa_only
def tenant_detail(tenant_id: int):
    return jsonify(tenants.serialize(tenants.get_tenant(tenant_id)))


@superadmin_bp.post("/tenants/<int:tenant_id>/block")
@sa_only
def tenant_block(tenant_id: int):
    t = tenants.set_blocked(tenants.get_tenant(tenant_id), as_bool(json_body().get("blocked", True)))
    db.session.commit()
    return jsonify(tenants.serialize(t))


# ---------------- Jobs ----------------
@superadmin_bp.get("/jobs")
@sa_only
def job_list():
    return jsonify({"data": [jobs.serialize(j) for j in jobs.list_jobs()]})


@superadmin_bp.post("/jobs/sync")
@sa_only
def job_sync():
    synced = jobs.sync_jobs()
    return jsonify({"data": [jobs.serialize(j) for j in synced]})


@superadmin_bp.get("/jobs/<name>")
@sa_only
def job_detail(name: str):
    return jsonify(jobs.serialize(jobs.get_job(name)))


@superadmin_bp.get("/jobs/<name>/stats")
@sa_only
def job_stats(name: str):
    return jsonify(jobs.job_stats(name))


@superadmin_bp.get("/jobs/<name>/logs")
@sa_only
def job_logs(name: str):
    a = request.args
    rows = jobs.job_logs(
        name,
        status=a.get("status"),
        date_from=a.get("date_from"),
        date_to=a.get("date_to"),
        limit=to_int(a.get("limit"), "limit", default=jobs.LOGS_LIMIT, minimum=1),
    )
    return jsonify({"data": [jobs.serialize_log(r) for r in rows]})


@superadmin_bp.post("/jobs/<name>/run")
@sa_only
def job_run(name: str):
    current_app.logger.info("job %s triggered manually by user %s", name, current_user.id)
    log = jobs.run_job(name, manual=True)
    return jsonify(jobs.serialize_log(log))


@superadmin_bp.post("/jobs/<name>/enable")
@sa_only
def job_enable(name: str):
    return jsonify(jobs.serialize(jobs.enable_job(name)))


@superadmin_bp.post("/jobs/<name>/disable")
@sa_only
def job_disable(name: str):
    return jsonify(jobs.serialize(jobs.disable_job(name)))


@superadmin_bp.put("/jobs/<name>/schedule")
@sa_only
def job_schedule(name: str):
    return jsonify(jobs.serialize(jobs.update_schedule(name, json_body().get("schedule") or "")))
