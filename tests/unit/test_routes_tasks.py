"""
HTTP tests for the course task routes
"""
import pytest

from tests.helpers import auth_headers

QUESTIONS = [
    {"questionText": "2 + 2?", "options": ["3", "4"], "correctAnswer": "4", "explanation": "arithmetic"},
    {"questionText": "Capital of France?", "options": ["Paris", "Rome"], "correctAnswer": "Paris"},
]


@pytest.fixture
def course(client, people):
    response = client.post(
        "/api/courses", json={"courseId": "C1", "title": "Course 1"}, headers=auth_headers(people.tutor)
    )
    assert response.status_code == 201
    return response.json()["data"]


@pytest.fixture
def task(client, people, course):
    response = client.post(
        "/api/courses/C1/tasks",
        json={"title": "HW1", "type": "HOMEWORK", "isPublished": True, "maxAttempts": 1, "questions": QUESTIONS},
        headers=auth_headers(people.tutor),
    )
    assert response.status_code == 201
    return response.json()["data"]


def _answers(task, *answers):
    return {
        "responses": [
            {"questionId": q["questionId"], "answer": a} for q, a in zip(task["questions"], answers)
        ]
    }


class TestTaskManagement:
    def test_create_task_envelope(self, client, people, course):
        response = client.post(
            "/api/courses/C1/tasks",
            json={"title": "Exam", "type": "EXAM"},
            headers=auth_headers(people.tutor),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Task created successfully"
        assert body["data"]["type"] == "EXAM"
        assert body["data"]["isPublished"] is False
        assert body["data"]["maxAttempts"] == 1
        assert body["data"]["availability"]["reason"] == "UNPUBLISHED"

    def test_invalid_type_is_400(self, client, people, course):
        response = client.post(
            "/api/courses/C1/tasks",
            json={"title": "Quiz", "type": "quiz"},
            headers=auth_headers(people.tutor),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["statusCode"] == 400
        assert body["message"].startswith("Invalid type")

    def test_non_object_body_is_400(self, client, people, course):
        response = client.post("/api/courses/C1/tasks", json=["HW"], headers=auth_headers(people.tutor))
        assert response.status_code == 400

    def test_learner_cannot_create(self, client, people, course):
        response = client.post(
            "/api/courses/C1/tasks", json={"title": "HW", "type": "EXAM"}, headers=auth_headers(people.learner)
        )
        assert response.status_code == 403

    def test_other_tutor_cannot_edit(self, client, people, task):
        url = f"/api/courses/C1/tasks/{task['taskId']}"

        denied = client.put(url, json={"title": "Mine now"}, headers=auth_headers(people.other_tutor))
        allowed = client.put(url, json={"title": "Renamed"}, headers=auth_headers(people.admin))

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["data"]["title"] == "Renamed"

    def test_unknown_course_or_task(self, client, people, task):
        headers = auth_headers(people.tutor)
        assert client.get("/api/courses/NOPE/tasks", headers=headers).status_code == 404
        assert client.get("/api/courses/C1/tasks/missing", headers=headers).status_code == 404

    def test_publish_lock_and_delete(self, client, people, task):
        url = f"/api/courses/C1/tasks/{task['taskId']}"
        headers = auth_headers(people.tutor)

        unpublished = client.post(f"{url}/publish", json={"isPublished": False}, headers=headers)
        locked = client.post(f"{url}/lock", headers=headers)
        deleted = client.delete(url, headers=headers)

        assert unpublished.json()["message"] == "Task unpublished"
        assert locked.json()["message"] == "Task locked"
        assert deleted.status_code == 200
        assert client.get(url, headers=headers).status_code == 404

    def test_question_routes(self, client, people, task):
        url = f"/api/courses/C1/tasks/{task['taskId']}/questions"
        headers = auth_headers(people.tutor)

        added = client.post(url, json={"questionText": "New?", "options": ["y", "n"], "correctAnswer": "y"}, headers=headers)
        question_id = added.json()["data"]["questionId"]
        updated = client.put(f"{url}/{question_id}", json={"explanation": "because"}, headers=headers)
        removed = client.delete(f"{url}/{question_id}", headers=headers)

        assert added.status_code == 201
        assert updated.json()["data"]["explanation"] == "because"
        assert removed.status_code == 200
        assert client.delete(f"{url}/{question_id}", headers=headers).status_code == 404


class TestLearnerFlow:
    def test_learner_never_sees_answers(self, client, people, task):
        response = client.get(f"/api/courses/C1/tasks/{task['taskId']}", headers=auth_headers(people.learner))

        assert response.status_code == 200
        for question in response.json()["data"]["questions"]:
            assert "correctAnswer" not in question
            assert "explanation" not in question

        listed = client.get("/api/courses/C1/tasks", headers=auth_headers(people.learner)).json()["data"]
        assert all("correctAnswer" not in q for t in listed for q in t["questions"])

    def test_start_save_submit(self, client, people, task):
        url = f"/api/courses/C1/tasks/{task['taskId']}"
        headers = auth_headers(people.learner)

        started = client.post(f"{url}/start", headers=headers)
        saved = client.post(f"{url}/progress", json={"savedResponses": ["4"], "lastQuestionIndex": 1}, headers=headers)
        submitted = client.post(f"{url}/submit", json=_answers(task, "4", "Rome"), headers=headers)

        assert started.status_code == 200
        assert started.json()["data"]["inProgress"] is True
        assert saved.json()["data"]["lastQuestionIndex"] == 1
        assert submitted.status_code == 200
        result = submitted.json()["data"]
        assert (result["score"], result["bestScore"], result["attemptCount"]) == (1, 1, 1)
        assert result["attemptsRemaining"] == 0
        assert result["percentage"] == 50

    def test_attempt_cap_is_403_with_reason(self, client, people, task):
        url = f"/api/courses/C1/tasks/{task['taskId']}/submit"
        headers = auth_headers(people.learner)
        client.post(url, json=_answers(task, "4", "Paris"), headers=headers)

        response = client.post(url, json=_answers(task, "4", "Paris"), headers=headers)

        assert response.status_code == 403
        assert response.json()["details"]["reason"] == "NO_ATTEMPTS_REMAINING"

    def test_locked_task_is_403(self, client, people, task):
        url = f"/api/courses/C1/tasks/{task['taskId']}"
        client.post(f"{url}/lock", headers=auth_headers(people.tutor))

        response = client.post(f"{url}/start", headers=auth_headers(people.learner))

        assert response.status_code == 403
        assert response.json()["details"]["reason"] == "LOCKED"

    def test_save_without_start_is_400(self, client, people, task):
        response = client.post(
            f"/api/courses/C1/tasks/{task['taskId']}/progress",
            json={"savedResponses": []},
            headers=auth_headers(people.learner),
        )
        assert response.status_code == 400

    def test_overview_records_and_submissions(self, client, people, task):
        url = f"/api/courses/C1/tasks/{task['taskId']}"
        client.post("/api/courses/C1/subscribe", headers=auth_headers(people.learner))
        client.post("/api/courses/C1/subscribe", headers=auth_headers(people.other_learner))
        client.post(f"{url}/submit", json=_answers(task, "4", "Paris"), headers=auth_headers(people.learner))

        overview = client.get(f"{url}/overview", headers=auth_headers(people.learner)).json()["data"]
        records = client.get(f"{url}/records", headers=auth_headers(people.tutor))
        denied = client.get(f"{url}/records", headers=auth_headers(people.learner))
        mine = client.get("/api/tasks/my-submissions", headers=auth_headers(people.learner)).json()["data"]
        my_tasks = client.get("/api/tasks", headers=auth_headers(people.learner)).json()

        assert overview["progress"]["finalScore"] == 2
        assert overview["stats"]["count"] == 1
        assert records.status_code == 200
        assert records.json()["data"]["totalEnrolled"] == 2
        assert [r["userName"] for r in records.json()["data"]["notCompletedLearners"]] == ["liam"]
        assert denied.status_code == 403
        assert [m["task"]["title"] for m in mine] == ["HW1"]
        assert my_tasks["count"] == 1


class TestCourseAndUserRoutes:
    def test_duplicate_course_is_409(self, client, people, course):
        response = client.post(
            "/api/courses", json={"courseId": "C1", "title": "Again"}, headers=auth_headers(people.admin)
        )
        assert response.status_code == 409

    def test_learner_cannot_create_course(self, client, people):
        response = client.post("/api/courses", json={"courseId": "X", "title": "X"}, headers=auth_headers(people.learner))
        assert response.status_code == 403

    def test_course_owner_checks(self, client, people, course):
        denied = client.put("/api/courses/C1", json={"title": "Hijack"}, headers=auth_headers(people.other_tutor))
        deleted = client.delete("/api/courses/C1", headers=auth_headers(people.tutor))

        assert denied.status_code == 403
        assert deleted.json()["data"] == {"courseId": "C1", "deletedTasks": 0}

    def test_admin_user_routes(self, client, people):
        admin = auth_headers(people.admin)

        listed = client.get("/api/users", headers=admin).json()
        promoted = client.put(f"/api/users/{people.learner.user_id}/role", json={"role": "tutor"}, headers=admin)
        bad_role = client.put(f"/api/users/{people.learner.user_id}/role", json={"role": "admin"}, headers=admin)
        self_delete = client.delete(f"/api/users/{people.admin.user_id}", headers=admin)
        deleted = client.delete(f"/api/users/{people.other_learner.user_id}", headers=admin)

        assert listed["count"] == 5
        assert all("password" not in u for u in listed["data"])
        assert promoted.json()["data"]["role"] == "tutor"
        assert bad_role.status_code == 400
        assert self_delete.status_code == 400
        assert deleted.status_code == 200

    def test_profile_routes(self, client, people):
        headers = auth_headers(people.learner)

        updated = client.put("/api/users/me", json={"userName": "leah"}, headers=headers)
        changed = client.put(
            "/api/users/me/password", json={"currentPassword": "secret123", "newPassword": "another1"}, headers=headers
        )
        wrong = client.put(
            "/api/users/me/password", json={"currentPassword": "secret123", "newPassword": "another2"}, headers=headers
        )

        assert updated.json()["data"]["userName"] == "leah"
        assert changed.status_code == 200
        assert wrong.status_code == 401

    def test_my_students(self, client, people, course):
        client.post("/api/courses/C1/subscribe", headers=auth_headers(people.learner))

        response = client.get("/api/users/my-students", headers=auth_headers(people.tutor))
        forbidden = client.get("/api/users/my-students", headers=auth_headers(people.learner))

        assert response.json()["totalStudents"] == 1
        assert response.json()["data"][0]["students"][0]["userName"] == "lea"
        assert forbidden.status_code == 403
