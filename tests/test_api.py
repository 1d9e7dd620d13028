from datetime import datetime, timedelta

from civic_issues.auth import create_access_token


def _issue_payload(**overrides):
    payload = {
        "title": "Broken Street Light",
        "description": "Light pole flickering all night",
        "latitude": 28.6139,
        "longitude": 77.2090,
        "category": "Infrastructure",
    }
    payload.update(overrides)
    return payload


def test_create_and_fetch_issue(client, make_user, auth_headers):
    owner = make_user()
    resp = client.post("/issues", json=_issue_payload(), headers=auth_headers(owner))
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Issue reported successfully"
    assert "timestamp" in body
    issue = body["data"]
    assert issue["status"] == "NEW"
    assert issue["priority"] == "MEDIUM"
    assert issue["userId"] == owner

    resp = client.get(f"/issues/{issue['id']}")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["title"] == "Broken Street Light"
    assert data["latitude"] == 28.6139
    assert data["longitude"] == 77.2090
    assert data["user"]["id"] == owner


def test_create_requires_token(client):
    resp = client.post("/issues", json=_issue_payload())
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"
    assert resp.json()["success"] is False


def test_invalid_token_is_rejected(client):
    resp = client.get("/issues/my", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_expired_token_is_rejected(client, make_user):
    token = create_access_token(make_user(), "USER", expires=timedelta(minutes=-1))
    resp = client.get("/issues/my", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_create_validation_error_has_field_detail(client, make_user, auth_headers):
    resp = client.post(
        "/issues", json=_issue_payload(title="Bad", latitude=120), headers=auth_headers(make_user())
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert {error["field"] for error in body["errors"]} == {"title", "latitude"}


def test_malformed_body_is_a_validation_error(client, make_user, auth_headers):
    resp = client.post(
        "/issues", json=_issue_payload(latitude="north"), headers=auth_headers(make_user())
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_list_pagination_envelope(client, make_user, make_issue):
    owner = make_user()
    start = datetime(2024, 1, 1)
    for i in range(12):
        make_issue(owner, title=f"Resolved report {i}", status="RESOLVED",
                   created_at=start + timedelta(hours=i))

    resp = client.get("/issues", params={"status": "RESOLVED", "page": 2, "limit": 5})
    assert resp.status_code == 200
    body = resp.json()
    assert [item["title"] for item in body["data"]] == [
        f"Resolved report {i}" for i in (6, 5, 4, 3, 2)
    ]
    assert body["pagination"] == {
        "currentPage": 2,
        "totalPages": 3,
        "totalItems": 12,
        "itemsPerPage": 5,
        "hasNextPage": True,
        "hasPrevPage": True,
    }


def test_list_caps_limit(client, make_user, make_issue):
    make_issue(make_user())
    resp = client.get("/issues", params={"limit": 1000})
    assert resp.json()["pagination"]["itemsPerPage"] == 100


def test_list_rejects_bad_status(client):
    resp = client.get("/issues", params={"status": "REPORTED"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_ENUM_VALUE"


def test_nearby(client, make_user, make_issue):
    owner = make_user()
    make_issue(owner, title="Close by", latitude=28.62, longitude=77.21)
    make_issue(owner, title="Far away", latitude=19.07, longitude=72.87)

    resp = client.get("/issues/nearby", params={"latitude": 28.6139, "longitude": 77.2090})
    assert resp.status_code == 200
    assert [item["title"] for item in resp.json()["data"]] == ["Close by"]

    resp = client.get("/issues/nearby", params={"latitude": 28.6})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_COORDINATE"

    resp = client.get("/issues/nearby", params={"latitude": 28.6, "longitude": 77.2, "radius": 80})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_RADIUS"


def test_my_issues_ignores_user_id_parameter(client, make_user, make_issue, auth_headers):
    alice = make_user("Alice")
    bob = make_user("Bob")
    make_issue(alice, title="Alice report")
    make_issue(bob, title="Bob report")

    resp = client.get("/issues/my", params={"userId": bob}, headers=auth_headers(alice))
    assert [item["title"] for item in resp.json()["data"]] == ["Alice report"]


def test_update_ownership(client, make_user, make_issue, auth_headers):
    owner = make_user("Owner")
    stranger = make_user("Stranger")
    admin = make_user("Admin", role="ADMIN")
    issue_id = make_issue(owner)

    resp = client.put(f"/issues/{issue_id}", json={"title": "Not my issue"}, headers=auth_headers(stranger))
    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"

    resp = client.put(
        f"/issues/{issue_id}",
        json={"title": "Fixed by admin", "status": "IN_PROGRESS"},
        headers=auth_headers(admin, "ADMIN"),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["title"] == "Fixed by admin"
    assert resp.json()["data"]["status"] == "IN_PROGRESS"


def test_update_missing_issue(client, make_user, auth_headers):
    resp = client.put("/issues/missing", json={"title": "Whatever title"}, headers=auth_headers(make_user()))
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


def test_delete_survives_image_cleanup_failure(client, storage, monkeypatch, make_user, make_issue, auth_headers):
    owner = make_user()
    issue_id = make_issue(owner, images=["https://cdn.example.com/lok-awaaz/issues/light.jpg"])
    attempted = []

    def failing_delete(reference):
        attempted.append(reference)
        raise ConnectionError("storage unreachable")

    monkeypatch.setattr(storage, "delete", failing_delete)

    resp = client.delete(f"/issues/{issue_id}", headers=auth_headers(owner))
    assert resp.status_code == 200
    assert resp.json()["data"] == {"deletedIssueId": issue_id}
    assert attempted == ["https://cdn.example.com/lok-awaaz/issues/light.jpg"]

    listed = client.get("/issues").json()
    assert listed["data"] == []
    assert client.get(f"/issues/{issue_id}").status_code == 404


def test_change_status_endpoint(client, make_user, make_issue, auth_headers):
    owner = make_user()
    admin = make_user("Admin", role="ADMIN")
    issue_id = make_issue(owner)

    resp = client.patch(f"/issues/{issue_id}/status", json={"status": "RESOLVED"}, headers=auth_headers(owner))
    assert resp.status_code == 403

    resp = client.patch(
        f"/issues/{issue_id}/status", json={"status": "BOGUS"}, headers=auth_headers(admin, "ADMIN")
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_STATUS"

    resp = client.patch(
        f"/issues/{issue_id}/status", json={"status": "RESOLVED"}, headers=auth_headers(admin, "ADMIN")
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "RESOLVED"


def test_stats_visibility(client, make_user, make_issue, auth_headers):
    alice = make_user("Alice")
    bob = make_user("Bob")
    make_issue(alice, status="RESOLVED")

    resp = client.get("/issues/stats", params={"userId": alice}, headers=auth_headers(alice))
    assert resp.status_code == 200
    assert resp.json()["data"]["byStatus"]["resolved"] == 1

    resp = client.get("/issues/stats", params={"userId": alice}, headers=auth_headers(bob))
    assert resp.status_code == 403


def test_admin_routes(client, make_user, make_issue, auth_headers):
    owner = make_user()
    admin = make_user("Admin", role="ADMIN")
    first = make_issue(owner)
    second = make_issue(owner)

    assert client.get("/admin/issues", headers=auth_headers(owner)).status_code == 403

    resp = client.get("/admin/issues", params={"userId": owner}, headers=auth_headers(admin, "ADMIN"))
    assert resp.json()["pagination"]["totalItems"] == 2

    resp = client.patch(
        "/admin/issues/bulk-status",
        json={"issueIds": [first, second, "missing"], "status": "REJECTED"},
        headers=auth_headers(admin, "ADMIN"),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "2/3 issues updated successfully"
    assert body["data"]["summary"] == {"total": 3, "successful": 2, "failed": 1}
    assert body["data"]["failed"][0]["issueId"] == "missing"

    resp = client.get("/admin/stats", headers=auth_headers(admin, "ADMIN"))
    assert resp.json()["data"]["summary"]["totalIssues"] == 2
    assert resp.json()["data"]["issues"]["byStatus"]["rejected"] == 2


def test_health_and_metrics(client):
    assert client.get("/health").json()["status"] == "healthy"
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "api_requests_total" in resp.text


def test_page_far_past_the_end(client, make_user, make_issue):
    make_issue(make_user())
    resp = client.get("/issues?page=100000000000000000000")
    assert resp.status_code == 200
    body = resp.json()
    assert body["data"] == []
    assert body["pagination"]["totalItems"] == 1
    assert body["pagination"]["hasNextPage"] is False


def test_update_with_unknown_status_is_rejected(client, make_user, make_issue, auth_headers):
    owner = make_user()
    issue_id = make_issue(owner)
    resp = client.put(f"/issues/{issue_id}", json={"status": "BOGUS"}, headers=auth_headers(owner))
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_STATUS"


def test_admin_user_management(client, storage, monkeypatch, make_user, make_issue, auth_headers):
    admin = make_user("Meera Admin", role="ADMIN")
    member = make_user("Asha Verma")
    make_issue(member, images=["https://cdn.example.com/lok-awaaz/issues/pothole.jpg"])
    admin_headers = auth_headers(admin, "ADMIN")
    removed = []
    monkeypatch.setattr(storage, "delete", removed.append)

    assert client.get("/admin/users", headers=auth_headers(member)).status_code == 403

    resp = client.get("/admin/users", params={"search": "asha"}, headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"]["totalItems"] == 1
    assert body["data"][0]["id"] == member
    assert body["data"][0]["issuesCount"] == 1

    resp = client.get(f"/admin/users/{member}", headers=admin_headers)
    details = resp.json()["data"]
    assert details["totalIssues"] == 1
    assert details["issueStatistics"]["new"] == 1
    assert "memberSince" in details
    assert client.get("/admin/users/missing", headers=admin_headers).status_code == 404

    resp = client.put(f"/admin/users/{member}/role", json={"role": "ADMIN"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "User role updated to ADMIN successfully"
    assert resp.json()["data"]["role"] == "ADMIN"

    resp = client.put(f"/admin/users/{admin}/role", json={"role": "USER"}, headers=admin_headers)
    assert resp.status_code == 400
    resp = client.put(f"/admin/users/{member}/role", json={"role": "OWNER"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_ENUM_VALUE"

    assert client.delete(f"/admin/users/{admin}", headers=admin_headers).status_code == 400

    resp = client.delete(f"/admin/users/{member}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"] == {"deletedUserId": member, "deletedIssues": 1}
    assert removed == ["https://cdn.example.com/lok-awaaz/issues/pothole.jpg"]
    assert client.get("/issues").json()["data"] == []
