import pytest
from fastapi.testclient import TestClient

from classmemory.main import create_app

ADMIN = {"Authorization": "Bearer tok-admin"}
STUDENT = {"Authorization": "Bearer tok-student"}
STRANGER = {"Authorization": "Bearer tok-stranger"}


@pytest.fixture
def client(cfg, services, forum):
    forum.tokens.update({
        "tok-admin": {"id": "u-admin", "displayName": "Ada"},
        "tok-student": {"id": "u-student", "name": "Sam"},
        "tok-stranger": {"id": "u-stranger"},
    })
    with TestClient(create_app(cfg, services)) as c:
        yield c


@pytest.fixture
def school(client):
    created = client.post("/api/schools", json={"name": "Springfield High"}, headers=ADMIN).json()
    school_id = created["school_id"]
    assert client.post("/api/schools/join", json={"joinKey": created["join_key"]}, headers=STUDENT).status_code == 200
    subject = client.post(f"/api/schools/{school_id}/subjects", json={"name": "Mathematics"}, headers=ADMIN).json()
    course = client.post(f"/api/subjects/{subject['id']}/courses",
                         json={"code": "MATH101", "title": "Calculus I"}, headers=ADMIN).json()
    chapter = client.post(f"/api/courses/{course['id']}/chapters", json={"title": "Limits"}, headers=ADMIN).json()
    return {"id": school_id, "subject": subject["id"], "course": course["id"], "chapter": chapter["id"]}


def contribute(client, chapter_id, n, headers=STUDENT):
    for i in range(n):
        r = client.post(f"/api/chapters/{chapter_id}/contributions",
                        json={"type": "takeaway", "title": f"Point {i}", "content": f"Point number {i}"},
                        headers=headers)
        assert r.status_code == 200


def test_health(client):
    assert client.get("/api/health").json() == {"ok": True}


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Token abc"}, {"Authorization": "Bearer nope"}])
def test_unauthenticated(client, headers):
    r = client.get("/api/schools", headers=headers)
    assert r.status_code == 401


def test_my_schools(client, school):
    r = client.get("/api/schools", headers=STUDENT)
    assert r.status_code == 200
    (entry,) = r.json()
    assert entry["school"]["id"] == school["id"]
    assert entry["role"] == "student"


def test_forbidden_does_not_say_why(client, school):
    r = client.post(f"/api/schools/{school['id']}/subjects", json={"name": "Art"}, headers=STUDENT)
    assert r.status_code == 403
    assert r.json() == {"detail": "insufficient permissions"}


def test_contributions_carry_the_author_name(client, school):
    contribute(client, school["chapter"], 1)
    (item,) = client.get(f"/api/chapters/{school['chapter']}/contributions", headers=ADMIN).json()
    assert item["author_name"] == "Sam"


def test_generation_flow(client, school):
    chapter = school["chapter"]
    contribute(client, chapter, 3)

    r = client.post(f"/api/chapters/{chapter}/generate-notes", headers=STUDENT)
    assert r.status_code == 400
    assert r.json() == {
        "detail": "Need at least 5 contributions to generate notes",
        "contribution_count": 3,
        "required": 5,
    }

    contribute(client, chapter, 2)
    r = client.post(f"/api/chapters/{chapter}/generate-notes", headers=STUDENT)
    assert r.status_code == 200
    assert r.json()["version"] == 1

    r = client.post(f"/api/chapters/{chapter}/generate-notes", headers=STUDENT)
    assert r.status_code == 429
    assert r.json()["remaining_minutes"] == 120

    notes = client.get(f"/api/chapters/{chapter}/notes", headers=STUDENT).json()
    assert notes["version"] == 1
    assert "keyConcepts" in notes["sections"]
    assert len(client.get(f"/api/chapters/{chapter}/notes/versions", headers=STUDENT).json()) == 1


def test_no_notes_yet(client, school):
    r = client.get(f"/api/chapters/{school['chapter']}/notes", headers=STUDENT)
    assert r.status_code == 404


def test_search_requires_membership(client, school):
    contribute(client, school["chapter"], 2)

    r = client.get("/api/search", params={"q": "point", "schoolId": school["id"]}, headers=STRANGER)
    assert r.status_code == 403

    r = client.get("/api/search", params={"q": "point", "schoolId": school["id"], "filters": "takeaways,bogus"},
                   headers=STUDENT)
    assert r.status_code == 200
    assert len(r.json()["results"]) == 2

    r = client.get("/api/search", params={"q": "p", "schoolId": school["id"]}, headers=STUDENT)
    assert r.status_code == 400
    assert r.json()["field"] == "q"


def test_ai_settings_validation(client, school):
    r = client.patch(f"/api/schools/{school['id']}/ai-settings", json={"minContributions": 0}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["field"] == "minContributions"

    r = client.patch(f"/api/schools/{school['id']}/ai-settings", json={"minContributions": 3}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["min_contributions"] == 3


def test_demo_join_is_idempotent(client):
    first = client.post("/api/schools/demo/join", headers=STUDENT).json()
    second = client.post("/api/schools/demo/join", headers=STUDENT).json()
    assert (first["school_id"], first["role"], first["already_member"]) == ("demo", "student", False)
    assert second["already_member"] is True


def test_sandbox_admin_endpoints(client):
    assert client.get("/api/admin/sandbox", headers=ADMIN).json() == {"school_id": "demo", "provisioned": False}
    summary = client.post("/api/admin/sandbox", headers=ADMIN).json()
    assert summary["chapter_count"] == 5
    assert client.get("/api/admin/sandbox", headers=ADMIN).json()["provisioned"] is True


def test_browse_the_hierarchy(client, school):
    r = client.get(f"/api/schools/{school['id']}", headers=STUDENT)
    assert r.status_code == 200
    assert (r.json()["school"]["name"], r.json()["role"]) == ("Springfield High", "student")

    (subject,) = client.get(f"/api/schools/{school['id']}/subjects", headers=STUDENT).json()
    assert subject["id"] == school["subject"]
    assert client.get(f"/api/subjects/{school['subject']}", headers=STUDENT).json()["name"] == "Mathematics"

    (course,) = client.get(f"/api/subjects/{school['subject']}/courses", headers=STUDENT).json()
    assert course["id"] == school["course"]
    assert client.get(f"/api/courses/{school['course']}", headers=STUDENT).json()["code"] == "MATH101"

    chapter = client.get(f"/api/chapters/{school['chapter']}", headers=STUDENT).json()
    assert (chapter["title"], chapter["status"]) == ("Limits", "collecting")


@pytest.mark.parametrize("path", [
    "/api/schools/{id}",
    "/api/schools/{id}/subjects",
    "/api/subjects/{subject}",
    "/api/subjects/{subject}/courses",
    "/api/courses/{course}",
    "/api/chapters/{chapter}",
])
def test_browse_requires_membership(client, school, path):
    r = client.get(path.format(**school), headers=STRANGER)
    assert r.status_code == 403


def test_browse_missing_records(client, school):
    assert client.get("/api/subjects/missing", headers=STUDENT).status_code == 404
    assert client.get("/api/courses/missing", headers=STUDENT).status_code == 404
    assert client.get("/api/chapters/missing", headers=STUDENT).status_code == 404
    assert client.get("/api/contributions/missing", headers=STUDENT).status_code == 404


def test_contribution_detail_and_replies(client, school):
    contribute(client, school["chapter"], 1)
    (post,) = client.get(f"/api/chapters/{school['chapter']}/contributions", headers=ADMIN).json()

    r = client.get(f"/api/contributions/{post['id']}", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["content"] == "Point number 0"

    r = client.post(f"/api/posts/{post['id']}/replies", json={"content": "Nice one"}, headers=ADMIN)
    assert r.status_code == 200
    assert (r.json()["parent_id"], r.json()["author_name"]) == (post["id"], "Ada")

    r = client.post(f"/api/posts/{post['id']}/replies", json={"content": " "}, headers=ADMIN)
    assert r.status_code == 400
    r = client.post(f"/api/posts/{post['id']}/replies", json={"content": "hi"}, headers=STRANGER)
    assert r.status_code == 403

    (reply,) = client.get(f"/api/posts/{post['id']}/replies", headers=STUDENT).json()
    assert reply["content"] == "Nice one"
    (listed,) = client.get(f"/api/chapters/{school['chapter']}/contributions", headers=STUDENT).json()
    assert listed["reply_count"] == 1


def test_forum_failure_is_a_safe_502(client, school, forum):
    forum.failures["create_post"] = lambda payload: True
    r = client.post(f"/api/chapters/{school['chapter']}/contributions", json={"content": "x"}, headers=STUDENT)
    assert r.status_code == 502
    assert "injected" not in r.text
