import io

import pytest
from pypdf import PdfWriter

from app.marketplace.db import session_scope
from app.marketplace.modules.projects.models import Milestone, Project
from app.marketplace.modules.projects.service import apply_milestone_state, project_progress


def _pdf_bytes() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


@pytest.fixture()
def team(make_user, make_project, login):
    """A client's project with one selected freelancer, plus tokens for everyone involved."""
    make_user("admin", "admin@example.com")
    client_id = make_user("client", "client@example.com")
    fl_id = make_user("freelancer", "fl@example.com", profile_status="ACCEPTED")
    make_user("freelancer", "other-fl@example.com", profile_status="ACCEPTED")
    make_user("client", "stranger@example.com")
    pid = make_project(client_id, freelancer_ids=(fl_id,))
    return {
        "project_id": pid,
        "freelancer_id": fl_id,
        "admin": login("admin@example.com"),
        "client": login("client@example.com"),
        "freelancer": login("fl@example.com"),
        "other_freelancer": login("other-fl@example.com"),
        "stranger": login("stranger@example.com"),
    }


def test_milestone_state_rules():
    m = Milestone(name="Design", status="PLANNED", progress=0)
    apply_milestone_state(m, progress=40)
    assert (m.status, m.progress) == ("IN_PROGRESS", 40)
    assert m.started_at is not None

    apply_milestone_state(m, progress=100)
    assert m.status == "COMPLETED"
    assert m.is_milestone_completed is True
    assert m.completed_at is not None

    apply_milestone_state(m, status="IN_PROGRESS")
    assert (m.status, m.progress) == ("IN_PROGRESS", 99)
    assert m.completed_at is None

    apply_milestone_state(m, status="COMPLETED")
    assert m.progress == 100

    apply_milestone_state(m, progress=250)
    assert m.progress == 100


def test_project_progress_rounds():
    done = Milestone(status="COMPLETED")
    open_ = Milestone(status="IN_PROGRESS")
    assert project_progress([]) == 0
    assert project_progress([done, open_, open_]) == 33
    assert project_progress([done, done, open_]) == 67
    assert project_progress([done, done]) == 100


def test_milestone_lifecycle(app, client, team):
    pid = team["project_id"]
    r = client.post(f"/api/v1/projects/{pid}/milestones", json={"name": "Design"}, headers=team["client"])
    assert r.status_code == 403

    r = client.post(
        f"/api/v1/projects/{pid}/milestones",
        json={"name": "Design", "priority": "high", "assignedFreelancerId": team["freelancer_id"]},
        headers=team["admin"],
    )
    assert r.status_code == 201
    design = r.json["data"]["id"]
    r = client.post(f"/api/v1/projects/{pid}/milestones", json={"name": "Build"}, headers=team["admin"])
    build = r.json["data"]["id"]

    r = client.patch(
        f"/api/v1/projects/{pid}/milestones/{design}",
        json={"progress": 50},
        headers=team["freelancer"],
    )
    assert r.status_code == 200
    assert r.json["data"]["milestone"]["status"] == "IN_PROGRESS"
    assert r.json["data"]["projectStatus"] == "ONGOING"
    assert r.json["data"]["projectProgress"] == 0

    r = client.patch(f"/api/v1/projects/{pid}/milestones/{design}", json={"name": "Renamed"}, headers=team["freelancer"])
    assert r.status_code == 403
    r = client.patch(f"/api/v1/projects/{pid}/milestones/{design}", json={"progress": 60}, headers=team["other_freelancer"])
    assert r.status_code == 403

    r = client.patch(
        f"/api/v1/projects/{pid}/milestones/{design}",
        json={"status": "COMPLETED", "deliverableUrl": "https://files.example.com/design.zip"},
        headers=team["freelancer"],
    )
    assert r.json["data"]["milestone"]["progress"] == 100
    assert r.json["data"]["projectProgress"] == 50

    # Unassigned milestones are open to any selected freelancer.
    r = client.patch(f"/api/v1/projects/{pid}/milestones/{build}", json={"progress": 100}, headers=team["freelancer"])
    assert r.status_code == 200
    assert r.json["data"]["projectStatus"] == "COMPLETED"
    assert r.json["data"]["projectProgress"] == 100

    with session_scope(app) as s:
        assert s.get(Project, pid).completed_at is not None


def test_milestone_validation(client, team):
    pid = team["project_id"]
    headers = team["admin"]
    assert client.post(f"/api/v1/projects/{pid}/milestones", json={}, headers=headers).status_code == 400
    r = client.post(f"/api/v1/projects/{pid}/milestones", json={"name": "X", "priority": "URGENT"}, headers=headers)
    assert r.status_code == 400
    r = client.post(f"/api/v1/projects/{pid}/milestones", json={"name": "X", "deadline": "someday"}, headers=headers)
    assert r.status_code == 400
    r = client.post(f"/api/v1/projects/{pid}/milestones", json={"name": "X", "assignedFreelancerId": 9999}, headers=headers)
    assert r.status_code == 400
    assert client.patch(f"/api/v1/projects/{pid}/milestones/9999", json={"progress": 1}, headers=headers).status_code == 404

    mid = client.post(f"/api/v1/projects/{pid}/milestones", json={"name": "Design"}, headers=headers).json["data"]["id"]
    for raw in ('{"progress": 1e999}', '{"progress": NaN}', '{"progress": "lots"}'):
        r = client.patch(
            f"/api/v1/projects/{pid}/milestones/{mid}",
            data=raw,
            content_type="application/json",
            headers=headers,
        )
        assert r.status_code == 400, raw
        assert r.json["message"] == "progress must be a number between 0 and 100."
    r = client.patch(f"/api/v1/projects/{pid}/milestones/{mid}", json={"progress": "1e6"}, headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["milestone"]["progress"] == 100


def test_overdue_flag(client, team):
    pid = team["project_id"]
    client.post(
        f"/api/v1/projects/{pid}/milestones",
        json={"name": "Late", "deadline": "2020-01-01"},
        headers=team["admin"],
    )
    client.post(
        f"/api/v1/projects/{pid}/milestones",
        json={"name": "Done late", "deadline": "2020-01-01", "status": "COMPLETED"},
        headers=team["admin"],
    )
    r = client.get(f"/api/v1/projects/{pid}/milestones", headers=team["client"])
    assert r.status_code == 200
    flags = {m["name"]: m["isOverdue"] for m in r.json["data"]["milestones"]}
    assert flags == {"Late": True, "Done late": False}
    assert r.json["data"]["progress"] == 50
    assert r.json["data"]["isComplete"] is False


def test_project_access(client, team):
    pid = team["project_id"]
    assert client.get(f"/api/v1/projects/{pid}", headers=team["client"]).status_code == 200
    assert client.get(f"/api/v1/projects/{pid}", headers=team["freelancer"]).status_code == 200
    assert client.get(f"/api/v1/projects/{pid}", headers=team["admin"]).status_code == 200
    assert client.get(f"/api/v1/projects/{pid}", headers=team["stranger"]).status_code == 403
    assert client.get(f"/api/v1/projects/{pid}", headers=team["other_freelancer"]).status_code == 403
    assert client.get("/api/v1/projects/9999", headers=team["admin"]).status_code == 404

    r = client.get("/api/v1/projects/my-projects", headers=team["client"])
    assert r.json["data"]["kpis"] == {"totalProjects": 1, "completedProjects": 0, "pendingProjects": 1}
    r = client.get("/api/v1/freelancer/my-projects", headers=team["freelancer"])
    assert [p["id"] for p in r.json["data"]["projects"]] == [pid]


def test_discord_url(client, team):
    pid = team["project_id"]
    url = f"/api/v1/projects/{pid}/discord-url"
    assert client.patch(url, json={"discordChatUrl": "discord.gg/abc"}, headers=team["client"]).status_code == 400
    r = client.patch(url, json={"discordChatUrl": "https://discord.gg/abc"}, headers=team["client"])
    assert r.status_code == 200
    assert r.json["data"]["discordChatUrl"] == "https://discord.gg/abc"
    assert client.patch(url, json={"discordChatUrl": "https://x.test"}, headers=team["freelancer"]).status_code == 403


def test_admin_project_listing_and_update(client, team):
    pid = team["project_id"]
    r = client.get("/api/v1/admin/projects?status=PENDING&acceptingBids=true", headers=team["admin"])
    assert r.json["data"]["pagination"]["total"] == 1
    assert client.get("/api/v1/admin/projects?status=LOST", headers=team["admin"]).status_code == 400

    r = client.patch(
        f"/api/v1/admin/projects/{pid}",
        json={"difficultyLevel": "hard", "acceptingBids": False, "totalAmount": "2500"},
        headers=team["admin"],
    )
    assert r.status_code == 200
    assert r.json["data"]["difficultyLevel"] == "HARD"
    assert r.json["data"]["acceptingBids"] is False
    assert r.json["data"]["totalAmount"] == 2500.0
    assert client.patch(f"/api/v1/admin/projects/{pid}", json={"title": ""}, headers=team["admin"]).status_code == 400
    assert client.get("/api/v1/admin/projects", headers=team["client"]).status_code == 403


def _upload(client, pid, headers, data, filename="brief.pdf", mimetype="application/pdf", *, field="document", path="client-brief"):
    return client.post(
        f"/api/v1/projects/{pid}/{path}",
        data={field: (io.BytesIO(data), filename, mimetype)},
        content_type="multipart/form-data",
        headers=headers,
    )


def test_client_brief_upload_once(client, team):
    pid = team["project_id"]
    pdf = _pdf_bytes()

    assert client.get(f"/api/v1/projects/{pid}/client-brief", headers=team["client"]).status_code == 404
    assert _upload(client, pid, team["freelancer"], pdf).status_code == 403
    assert _upload(client, pid, team["client"], b"hello", filename="notes.txt", mimetype="text/plain").status_code == 400
    assert _upload(client, pid, team["client"], b"not really a pdf", filename="fake.pdf").status_code == 400

    r = _upload(client, pid, team["client"], pdf, filename="Our Brief.pdf")
    assert r.status_code == 201
    assert r.json["data"]["filename"] == "Our_Brief.pdf"
    assert r.json["data"]["pageCount"] == 1
    assert r.json["data"]["sizeBytes"] == len(pdf)

    r = _upload(client, pid, team["client"], pdf)
    assert r.status_code == 400
    assert "cannot be replaced" in r.json["message"]

    r = client.get(f"/api/v1/projects/{pid}/client-brief/download", headers=team["freelancer"])
    assert r.status_code == 200
    assert r.data == pdf
    assert client.get(f"/api/v1/projects/{pid}/client-brief/download", headers=team["stranger"]).status_code == 403
    assert client.get(f"/api/v1/projects/{pid}", headers=team["client"]).json["data"]["hasClientBrief"] is True


def test_client_brief_requires_file(client, team):
    r = client.post(
        f"/api/v1/projects/{team['project_id']}/client-brief",
        data={},
        content_type="multipart/form-data",
        headers=team["client"],
    )
    assert r.status_code == 400
    assert r.json["message"] == "A PDF file is required (form field 'document')."


def test_client_brief_accepts_file_field_and_upload_path(client, team):
    pid = team["project_id"]
    pdf = _pdf_bytes()
    r = _upload(client, pid, team["client"], pdf, field="file", path="client-brief/upload")
    assert r.status_code == 201
    assert r.json["data"]["filename"] == "brief.pdf"
    r = client.get(f"/api/v1/projects/{pid}/client-brief/download", headers=team["admin"])
    assert r.data == pdf


def test_feedback(client, team):
    pid = team["project_id"]
    r = client.post("/api/v1/feedback/submit", json={"projectId": pid, "rating": 6}, headers=team["client"])
    assert r.status_code == 400
    r = client.post("/api/v1/feedback/submit", json={"projectId": pid, "rating": 5}, headers=team["stranger"])
    assert r.status_code == 403
    r = client.post("/api/v1/feedback/submit", json={"projectId": pid, "rating": 5}, headers=team["freelancer"])
    assert r.status_code == 403
    r = client.post(
        "/api/v1/feedback/submit",
        json={"projectId": pid, "rating": 5, "comment": "Great work"},
        headers=team["client"],
    )
    assert r.status_code == 201
    assert r.json["data"]["rating"] == 5
