"""
Tests for course management, enrolment and the Saga helper
"""
import logging

import pytest

from coursetasks.errors import ConflictError, NotFoundError, ValidationError
from coursetasks.services.course_service import Saga
from tests.helpers import seed_people


class TestSaga:
    """Compensation runs newest first and the original error wins"""

    @pytest.mark.asyncio
    async def test_all_steps_succeed(self):
        calls = []

        async def action(name):
            calls.append(name)
            return name

        results = await (
            Saga("ok")
            .step("one", lambda: action("one"), lambda: action("undo one"))
            .step("two", lambda: action("two"))
            .run()
        )

        assert results == ["one", "two"]
        assert calls == ["one", "two"]

    @pytest.mark.asyncio
    async def test_failure_compensates_in_reverse(self):
        calls = []

        async def record(name):
            calls.append(name)

        async def boom():
            raise RuntimeError("step three failed")

        saga = (
            Saga("rollback")
            .step("one", lambda: record("one"), lambda: record("undo one"))
            .step("two", lambda: record("two"), lambda: record("undo two"))
            .step("three", boom, lambda: record("undo three"))
        )

        with pytest.raises(RuntimeError, match="step three failed"):
            await saga.run()

        assert calls == ["one", "two", "undo two", "undo one"]

    @pytest.mark.asyncio
    async def test_failed_compensation_is_logged(self, caplog):
        calls = []

        async def record(name):
            calls.append(name)

        async def broken_undo():
            raise OSError("store unavailable")

        async def boom():
            raise ValueError("original")

        saga = (
            Saga("partial")
            .step("one", lambda: record("one"), lambda: record("undo one"))
            .step("two", lambda: record("two"), broken_undo)
            .step("three", boom)
        )

        with caplog.at_level(logging.ERROR, logger="coursetasks.services.course_service"):
            with pytest.raises(ValueError, match="original"):
                await saga.run()

        assert calls == ["one", "two", "undo one"]
        assert "compensation for 'two' failed" in caplog.text


class TestCourseService:
    """Course CRUD"""

    @pytest.mark.asyncio
    async def test_tutor_owns_created_course(self, repos, course_service):
        people = await seed_people(repos.users)

        course = await course_service.create({"courseId": "CS101", "title": "Intro"}, people.tutor)

        assert course.instructor == "tina"
        assert course.instructor_id == people.tutor.user_id
        assert course.students == []

    @pytest.mark.asyncio
    async def test_admin_can_name_another_instructor(self, repos, course_service):
        people = await seed_people(repos.users)

        course = await course_service.create(
            {"courseId": "CS102", "title": "Data", "instructor": "tina", "videoURL": "https://v"}, people.admin
        )

        assert course.instructor == "tina"
        assert course.instructor_id == ""
        assert course.video_url == "https://v"

    @pytest.mark.asyncio
    async def test_create_validation(self, repos, course_service):
        people = await seed_people(repos.users)

        with pytest.raises(ValidationError):
            await course_service.create({"courseId": "has space", "title": "x"}, people.tutor)
        with pytest.raises(ValidationError):
            await course_service.create({"courseId": "OK1"}, people.tutor)

    @pytest.mark.asyncio
    async def test_duplicate_course_id(self, repos, course_service):
        people = await seed_people(repos.users)
        await course_service.create({"courseId": "CS101", "title": "Intro"}, people.tutor)

        with pytest.raises(ConflictError):
            await course_service.create({"courseId": "CS101", "title": "Again"}, people.other_tutor)

        assert (await course_service.get("CS101")).title == "Intro"

    @pytest.mark.asyncio
    async def test_hidden_courses_hidden_from_learners(self, repos, course_service):
        people = await seed_people(repos.users)
        await course_service.create({"courseId": "A", "title": "Visible"}, people.tutor)
        await course_service.create({"courseId": "B", "title": "Hidden", "isHidden": "true"}, people.tutor)

        learner_view = await course_service.list_courses(people.learner)
        tutor_view = await course_service.list_courses(people.tutor)

        assert [c.course_id for c in learner_view] == ["A"]
        assert sorted(c.course_id for c in tutor_view) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_update(self, repos, course_service):
        people = await seed_people(repos.users)
        await course_service.create({"courseId": "A", "title": "Old"}, people.tutor)

        updated = await course_service.update("A", {"title": "New", "courseId": "Z"})

        assert updated.title == "New"
        assert updated.course_id == "A"
        with pytest.raises(ValidationError):
            await course_service.update("A", {"courseId": "Z"})
        with pytest.raises(NotFoundError):
            await course_service.update("missing", {"title": "x"})

    @pytest.mark.asyncio
    async def test_delete_cascades(self, repos, course_service, engine):
        people = await seed_people(repos.users)
        await course_service.create({"courseId": "A", "title": "Doomed"}, people.tutor)
        await course_service.create({"courseId": "B", "title": "Kept"}, people.tutor)
        await course_service.subscribe("A", people.learner)
        learner = await repos.users.find_by_id(people.learner.user_id)
        await course_service.subscribe("B", learner)
        task = await engine.create_task(
            "A",
            {"title": "HW", "type": "HOMEWORK", "questions": [{"questionText": "?", "options": ["x"], "correctAnswer": "x"}]},
            people.tutor,
        )

        result = await course_service.delete("A")

        assert result == {"courseId": "A", "deletedTasks": 1}
        assert await repos.courses.find_by_course_id("A") is None
        assert await repos.tasks.find_by_id(task["taskId"]) is None
        assert await repos.questions.find_by_task(task["taskId"]) == []
        assert (await repos.users.find_by_id(people.learner.user_id)).enrolled_courses == ["B"]


class TestEnrolment:
    """Subscribe and unsubscribe keep both sides in step"""

    @pytest.mark.asyncio
    async def test_subscribe_updates_both_sides(self, repos, course_service):
        people = await seed_people(repos.users)
        await course_service.create({"courseId": "A", "title": "Course"}, people.tutor)

        course = await course_service.subscribe("A", people.learner)

        assert course.students == [people.learner.user_id]
        assert (await repos.users.find_by_id(people.learner.user_id)).enrolled_courses == ["A"]

    @pytest.mark.asyncio
    async def test_subscribe_is_idempotent(self, repos, course_service):
        people = await seed_people(repos.users)
        await course_service.create({"courseId": "A", "title": "Course"}, people.tutor)
        await course_service.subscribe("A", people.learner)
        learner = await repos.users.find_by_id(people.learner.user_id)

        course = await course_service.subscribe("A", learner)

        assert course.students == [people.learner.user_id]
        assert (await repos.users.find_by_id(people.learner.user_id)).enrolled_courses == ["A"]

    @pytest.mark.asyncio
    async def test_failed_student_write_rolls_back_enrolment(self, repos, course_service, monkeypatch):
        people = await seed_people(repos.users)
        await course_service.create({"courseId": "A", "title": "Course"}, people.tutor)

        async def failing_set_students(course_uid, student_ids):
            raise RuntimeError("write failed")

        monkeypatch.setattr(repos.courses, "set_students", failing_set_students)

        with pytest.raises(RuntimeError):
            await course_service.subscribe("A", people.learner)

        assert (await repos.users.find_by_id(people.learner.user_id)).enrolled_courses == []

    @pytest.mark.asyncio
    async def test_unsubscribe(self, repos, course_service):
        people = await seed_people(repos.users)
        await course_service.create({"courseId": "A", "title": "Course"}, people.tutor)
        await course_service.subscribe("A", people.learner)
        learner = await repos.users.find_by_id(people.learner.user_id)

        course = await course_service.unsubscribe("A", learner)

        assert course.students == []
        assert (await repos.users.find_by_id(people.learner.user_id)).enrolled_courses == []
        # Not enrolled any more: nothing to do
        assert (await course_service.unsubscribe("A", people.learner)).students == []

    @pytest.mark.asyncio
    async def test_subscribe_unknown_course(self, repos, course_service):
        people = await seed_people(repos.users)
        with pytest.raises(NotFoundError):
            await course_service.subscribe("missing", people.learner)
