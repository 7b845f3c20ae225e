"""
HTTP tests for the FastAPI adapter
"""
from datetime import timedelta

import pytest

from schoolvote.models import AccessLevel, utcnow

ROOT = AccessLevel.ROOT
SYSTEM_ADMIN = AccessLevel.SYSTEM_ADMIN
TEACHER = AccessLevel.TEACHER
OBSERVER = AccessLevel.OBSERVER

STUDENT = {
    "id": 10001,
    "classNumber": 1,
    "name": "Somchai",
    "surname": "Jaidee",
    "classroom": "M.6/1",
    "nationalId": "1100000000001",
}


@pytest.fixture
def live_election(services):
    """An election open right now by the wall clock"""
    now = utcnow()
    return services.elections.create_election({
        "title": "Student Committee",
        "type": "student-committee",
        "startDate": now - timedelta(hours=1),
        "endDate": now + timedelta(hours=1),
    })


class TestPageGating:
    """Test redirects for denied and unauthenticated requests"""

    def test_unauthenticated_redirects_to_login(self, client):
        response = client.get("/api/students", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/admin/login"

    def test_invalid_token_redirects_to_login(self, client):
        response = client.get("/api/students", headers={"Authorization": "Bearer junk"}, follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/admin/login"

    def test_observer_redirected_to_results(self, client, auth_headers):
        response = client.get("/api/students", headers=auth_headers(OBSERVER), follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/admin/results"

    def test_page_endpoint(self, client, auth_headers):
        allowed = client.get("/admin/pages/students", headers=auth_headers(TEACHER), follow_redirects=False)
        denied = client.get("/admin/pages/activity", headers=auth_headers(TEACHER), follow_redirects=False)

        assert allowed.status_code == 200
        assert denied.status_code == 303
        assert denied.headers["location"] == "/admin/students"


class TestStudentRoutes:
    """Test roster and voting-rights routes"""

    def test_add_and_list(self, client, auth_headers):
        created = client.post("/api/students", json=STUDENT, headers=auth_headers(SYSTEM_ADMIN))
        listed = client.get("/api/students", headers=auth_headers(TEACHER))

        assert created.status_code == 200
        assert created.json()["student"]["id"] == 10001
        assert [s["id"] for s in listed.json()] == [10001]

    def test_duplicate_add_is_400(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))

        response = client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))

        assert response.status_code == 400
        assert response.json()["detail"] == "Student ID already exists"

    def test_teacher_cannot_add(self, client, auth_headers):
        response = client.post("/api/students", json=STUDENT, headers=auth_headers(TEACHER),
                               follow_redirects=False)

        assert response.status_code == 303

    def test_teacher_approves(self, client, auth_headers, services):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))

        response = client.post("/api/students/10001/approve", headers=auth_headers(TEACHER, identity="teacher-7"))

        assert response.status_code == 200
        assert response.json()["voting_approved"] is True
        assert services.students.get_student(10001).voting_approved_by == "teacher-7"

    def test_approve_missing_student_is_404(self, client, auth_headers):
        response = client.post("/api/students/1/approve", headers=auth_headers(TEACHER))

        assert response.status_code == 404

    def test_bulk_approve_by_classroom(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))

        response = client.post("/api/students/bulk-approve", params={"classroom": "M.6/1"},
                               headers=auth_headers(TEACHER))

        assert response.json() == {"classroom": "M.6/1", "count": 1}

    def test_import(self, client, auth_headers):
        rows = [
            dict(STUDENT),
            {"id": 10002, "name": "Suda", "surname": "", "classroom": "M.6/1", "nationalId": "2"},
        ]

        response = client.post("/api/students/import", json={"rows": rows}, headers=auth_headers(ROOT))

        body = response.json()
        assert body["imported"] == 1
        assert body["skipped"] == 1

    def test_update_refuses_taken_national_id(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))
        client.post("/api/students", json=dict(STUDENT, id=10002, nationalId="1100000000002"),
                    headers=auth_headers(ROOT))

        response = client.put("/api/students/10002", json={"nationalId": "1100000000001"},
                              headers=auth_headers(ROOT))

        assert response.status_code == 400
        assert response.json()["detail"] == "National ID already exists"

    def test_stats(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))

        response = client.get("/api/students/stats", headers=auth_headers(TEACHER))

        assert response.json()["total"] == 1
        assert response.json()["pending"] == 1


class TestResultsPublishing:
    """Test publishing and the public visibility route"""

    def test_visibility_for_missing_election(self, client):
        response = client.get("/api/public/elections/nope/visibility")

        assert response.json() == {"allowed": False, "reason": "election_not_found"}

    def test_active_election_stays_hidden_when_published(self, client, auth_headers, live_election):
        published = client.post(f"/api/elections/{live_election.id}/publish", headers=auth_headers(SYSTEM_ADMIN))
        visibility = client.get(f"/api/public/elections/{live_election.id}/visibility")

        assert published.json()["is_published"] is True
        assert visibility.json() == {"allowed": False, "reason": "election_active"}

    def test_closed_and_published_is_visible(self, client, auth_headers, services, live_election):
        services.elections.close_election(live_election.id, utcnow() - timedelta(minutes=1))
        client.post(f"/api/elections/{live_election.id}/publish", headers=auth_headers(ROOT))

        visibility = client.get(f"/api/public/elections/{live_election.id}/visibility")

        assert visibility.json() == {"allowed": True, "reason": "published"}

    def test_observer_cannot_publish(self, client, auth_headers, live_election):
        response = client.post(f"/api/elections/{live_election.id}/publish", headers=auth_headers(OBSERVER),
                               follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/admin/results"

    def test_observer_reads_display_settings(self, client, auth_headers, live_election):
        response = client.get(f"/api/elections/{live_election.id}/display-settings", headers=auth_headers(OBSERVER))

        assert response.status_code == 200
        assert len(response.json()["position_configs"]) == len(live_election.positions)

    def test_apply_global_settings(self, client, auth_headers, live_election):
        response = client.put(
            f"/api/elections/{live_election.id}/display-settings",
            json={"globalShowWinnerOnly": True, "applyToAllPositions": True},
            headers=auth_headers(ROOT),
        )

        body = response.json()
        assert body["global_show_winner_only"] is True
        assert all(c["show_winner_only"] for c in body["position_configs"])


class TestStudentLogin:
    """Test student sign-in"""

    def test_login_issues_student_token(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))
        client.post("/api/students/10001/approve", headers=auth_headers(TEACHER))

        response = client.post("/api/student/login", json={"studentId": 10001, "nationalId": " 1100000000001 "})

        assert response.status_code == 200
        assert response.json()["student"]["id"] == 10001
        assert response.json()["token"]

    def test_wrong_national_id(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))
        client.post("/api/students/10001/approve", headers=auth_headers(TEACHER))

        response = client.post("/api/student/login", json={"studentId": "10001", "nationalId": "1100000000009"})

        assert response.status_code == 401

    def test_unapproved_student_cannot_sign_in(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))

        response = client.post("/api/student/login", json={"studentId": 10001, "nationalId": "1100000000001"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Voting right has not been approved"

    def test_student_token_is_not_an_admin_session(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT))
        client.post("/api/students/10001/approve", headers=auth_headers(TEACHER))
        token = client.post("/api/student/login",
                            json={"studentId": 10001, "nationalId": "1100000000001"}).json()["token"]

        response = client.get("/api/students", headers={"Authorization": f"Bearer {token}"},
                              follow_redirects=False)

        assert response.status_code == 303


class TestVoting:
    """Test vote casting and token routes"""

    @pytest.fixture
    def sign_in(self, client, auth_headers):
        """Register and approve a student, then return bearer headers for their session"""
        def build(student=STUDENT):
            client.post("/api/students", json=student, headers=auth_headers(ROOT))
            client.post(f"/api/students/{student['id']}/approve", headers=auth_headers(TEACHER))
            response = client.post("/api/student/login",
                                   json={"studentId": student["id"], "nationalId": student["nationalId"]})
            return {"Authorization": f"Bearer {response.json()['token']}"}
        return build

    def test_cast_and_verify(self, client, sign_in, live_election):
        headers = sign_in()

        cast = client.post("/api/vote", json={
            "electionId": live_election.id,
            "choices": {"president": "cand-1"},
        }, headers=headers)
        token = cast.json()["token"]
        again = client.post("/api/vote", json={"electionId": live_election.id}, headers=headers)
        verified = client.post("/api/verify-vote", json={"token": token})

        assert cast.status_code == 200
        assert again.status_code == 400
        assert again.json()["detail"] == "You have already voted in this election"
        assert verified.json()["election_id"] == live_election.id

    def test_unauthenticated_vote_refused(self, client, services, sign_in, live_election):
        sign_in()

        response = client.post("/api/vote", json={"studentId": 10001, "electionId": live_election.id,
                                                  "choices": {}})

        assert response.status_code == 401
        assert services.ballots.has_voted_in_election(10001, live_election.id) is False

    def test_vote_goes_to_signed_in_student_only(self, client, services, sign_in, live_election):
        other = dict(STUDENT, id=10002, nationalId="1100000000002", name="Suda")
        sign_in(other)
        headers = sign_in()

        response = client.post("/api/vote", json={"studentId": 10002, "electionId": live_election.id,
                                                  "choices": {}}, headers=headers)

        assert response.status_code == 200
        assert services.ballots.has_voted_in_election(10001, live_election.id) is True
        assert services.ballots.has_voted_in_election(10002, live_election.id) is False

    def test_admin_token_cannot_vote(self, client, auth_headers, live_election):
        response = client.post("/api/vote", json={"electionId": live_election.id},
                               headers=auth_headers(ROOT, identity="10001"))

        assert response.status_code == 401

    def test_validate_token(self, client):
        assert client.post("/api/tokens/validate", json={"token": " vote-a1b2-c3d4 "}).json() == {"valid": True}
        assert client.post("/api/tokens/validate", json={"token": "VOTE-1234"}).json() == {"valid": False}

    def test_verify_unknown_token_is_404(self, client):
        assert client.post("/api/verify-vote", json={"token": "VOTE-0000-0000"}).status_code == 404


class TestAdminRoutes:
    """Test admin management and the audit log"""

    def test_system_admin_creates_teacher_not_root(self, client, auth_headers):
        teacher = client.post("/api/admins", json={"username": "teacher.a", "accessLevel": 2},
                              headers=auth_headers(SYSTEM_ADMIN))
        root = client.post("/api/admins", json={"username": "newroot", "accessLevel": 0},
                           headers=auth_headers(SYSTEM_ADMIN), follow_redirects=False)

        assert teacher.status_code == 200
        assert root.status_code == 303

    def test_self_delete_refused(self, client, auth_headers, services):
        admin = services.admins.create_admin(ROOT, "root", None, ROOT).admin

        response = client.delete(f"/api/admins/{admin.id}", headers=auth_headers(ROOT, identity=str(admin.id)))

        assert response.status_code == 400
        assert services.admins.get_admin(admin.id) is not None

    def test_audit_log_records_actions(self, client, auth_headers):
        client.post("/api/students", json=STUDENT, headers=auth_headers(ROOT, identity="1"))

        response = client.get("/api/audit-logs", headers=auth_headers(ROOT))

        entries = response.json()
        assert entries[0]["action"] == "add_student"
        assert entries[0]["metadata"]["actor"] == "1"

    def test_teacher_cannot_read_audit_log(self, client, auth_headers):
        response = client.get("/api/audit-logs", headers=auth_headers(TEACHER), follow_redirects=False)

        assert response.status_code == 303

    def test_unauthenticated_delete_does_not_reveal_admin_ids(self, client, services):
        services.admins.create_admin(ROOT, "root", None, ROOT)

        existing = client.delete("/api/admins/1", follow_redirects=False)
        missing = client.delete("/api/admins/999", follow_redirects=False)

        assert existing.status_code == missing.status_code == 303
        assert existing.headers["location"] == missing.headers["location"] == "/admin/login"
        assert services.admins.get_admin(1) is not None

    def test_teacher_delete_is_redirected_before_lookup(self, client, auth_headers):
        response = client.delete("/api/admins/999", headers=auth_headers(TEACHER), follow_redirects=False)

        assert response.status_code == 303
