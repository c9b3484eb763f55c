import unittest

from backend.cognitia.models import ClassSession, ClassStatus, Group, UserRole
from backend.cognitia.services import create_user

from .support import API, ApiTestCase, auth_headers


class PlanApiTestCase(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = auth_headers(self.classroom.admin)
        self.teacher = auth_headers(self.classroom.teacher)

    def create_plan(self, **fields):
        payload = {"grade": "5", "school_year": "2026", **fields}
        response = self.client.post(f"{API}/plans", json=payload, headers=self.admin)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def create_course(self, plan_id, name, **fields):
        response = self.client.post(f"{API}/plans/{plan_id}/courses", json={"name": name, **fields}, headers=self.admin)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def create_topic(self, course_id, name, **fields):
        response = self.client.post(f"{API}/courses/{course_id}/topics", json={"name": name, **fields}, headers=self.admin)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def assign(self, course_id, teacher_id=None, group_id=None, school_year="2026"):
        return self.client.post(
            f"{API}/assignments",
            json={
                "teacher_id": teacher_id or self.classroom.teacher.id,
                "course_id": course_id,
                "group_id": group_id or self.classroom.group.id,
                "school_year": school_year,
            },
            headers=self.admin,
        )


class PlanRouteTests(PlanApiTestCase):
    def test_build_plan_with_courses_and_topics(self):
        plan = self.create_plan(description="Fifth grade")
        self.assertEqual(plan["status"], "draft")
        self.assertEqual((plan["course_count"], plan["topic_count"], plan["coverage"]), (0, 0, 0))

        math = self.create_course(plan["id"], "Mathematics", weekly_hours=6)
        science = self.create_course(plan["id"], "Science")
        self.assertEqual((math["position"], science["position"]), (1, 2))
        topics = [
            self.create_topic(math["id"], "Fractions", term=1),
            self.create_topic(math["id"], "Decimals", term=2),
            self.create_topic(math["id"], "Geometry"),
        ]
        self.assertEqual([topic["position"] for topic in topics], [1, 2, 3])

        detail = self.client.get(f"{API}/plans/{plan['id']}", headers=self.teacher).json()
        self.assertEqual(detail["course_count"], 2)
        self.assertEqual(detail["topic_count"], 3)
        self.assertEqual([course["name"] for course in detail["courses"]], ["Mathematics", "Science"])
        self.assertEqual([topic["name"] for topic in detail["courses"][0]["topics"]], ["Fractions", "Decimals", "Geometry"])
        self.assertEqual(detail["courses"][0]["weekly_hours"], 6)

        self.assertEqual(len(self.client.get(f"{API}/plans", params={"school_year": "2026"}, headers=self.admin).json()), 1)
        self.assertEqual(self.client.get(f"{API}/plans", params={"school_year": "2025"}, headers=self.admin).json(), [])

    def test_only_admins_manage_plans(self):
        denied = self.client.post(f"{API}/plans", json={"grade": "5", "school_year": "2026"}, headers=self.teacher)
        self.assertEqual(denied.status_code, 403)

        for year in ("26", "twenty", "2026-27"):
            with self.subTest(year=year):
                response = self.client.post(f"{API}/plans", json={"grade": "5", "school_year": year}, headers=self.admin)
                self.assertEqual(response.status_code, 422)

    def test_update_plan(self):
        plan = self.create_plan()

        response = self.client.patch(
            f"{API}/plans/{plan['id']}", json={"status": "active", "description": "Approved"}, headers=self.admin
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "active")
        self.assertEqual(response.json()["description"], "Approved")
        self.assertEqual(response.json()["grade"], "5")

    def test_duplicate_copies_courses_and_topics_as_draft(self):
        plan = self.create_plan(description="Fifth grade", status="active", is_base=True)
        math = self.create_course(plan["id"], "Mathematics")
        self.create_topic(math["id"], "Fractions", term=1)
        self.create_topic(math["id"], "Decimals", term=1)

        response = self.client.post(f"{API}/plans/{plan['id']}/duplicate", headers=self.admin)

        self.assertEqual(response.status_code, 201)
        copy = response.json()
        self.assertNotEqual(copy["id"], plan["id"])
        self.assertEqual(copy["status"], "draft")
        self.assertFalse(copy["is_base"])
        self.assertEqual(copy["description"], "Fifth grade (Copy)")
        self.assertEqual([topic["name"] for topic in copy["courses"][0]["topics"]], ["Fractions", "Decimals"])
        self.assertNotEqual(copy["courses"][0]["id"], math["id"])

        original = self.client.get(f"{API}/plans/{plan['id']}", headers=self.admin).json()
        self.assertEqual(original["status"], "active")
        self.assertEqual(original["topic_count"], 2)

    def test_delete_plan_in_use_conflicts(self):
        plan = self.create_plan()
        math = self.create_course(plan["id"], "Mathematics")
        self.create_topic(math["id"], "Fractions")
        assignment = self.assign(math["id"]).json()

        self.assertEqual(self.client.delete(f"{API}/plans/{plan['id']}", headers=self.admin).status_code, 409)

        removed = self.client.delete(f"{API}/assignments/{assignment['id']}", headers=self.admin)
        self.assertEqual(removed.status_code, 204)
        self.assertEqual(self.client.delete(f"{API}/plans/{plan['id']}", headers=self.admin).status_code, 204)
        self.assertEqual(self.client.get(f"{API}/plans/{plan['id']}", headers=self.admin).status_code, 404)

    def test_unknown_course_or_plan_is_not_found(self):
        self.assertEqual(
            self.client.post(f"{API}/plans/999/courses", json={"name": "Art"}, headers=self.admin).status_code, 404
        )
        self.assertEqual(
            self.client.post(f"{API}/courses/999/topics", json={"name": "Color"}, headers=self.admin).status_code, 404
        )


class AssignmentRouteTests(PlanApiTestCase):
    def test_assign_teacher_to_course_and_group(self):
        plan = self.create_plan()
        math = self.create_course(plan["id"], "Mathematics", weekly_hours=6)

        response = self.assign(math["id"])

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["teacher_name"], "Tomas Teacher")
        self.assertEqual(body["course_name"], "Mathematics")
        self.assertEqual(body["weekly_hours"], 6)
        self.assertEqual(body["group_name"], "5A")
        self.assertEqual(body["school_year"], "2026")

        self.assertEqual(self.assign(math["id"]).status_code, 409)
        self.assertEqual(self.assign(math["id"], school_year="2027").status_code, 201)
        self.assertEqual(self.assign(math["id"], teacher_id=self.classroom.student.id).status_code, 404)

    def test_teachers_see_only_their_assignments(self):
        plan = self.create_plan()
        math = self.create_course(plan["id"], "Mathematics")
        other = create_user(
            self.db, email="other@school.test", full_name="Olga Other", raw_password="Other@12345", role=UserRole.TEACHER
        )
        self.assign(math["id"])
        self.assign(math["id"], teacher_id=other.id)

        own = self.client.get(f"{API}/assignments", headers=self.teacher).json()
        everyone = self.client.get(f"{API}/assignments", headers=self.admin).json()

        self.assertEqual([item["teacher_id"] for item in own], [self.classroom.teacher.id])
        self.assertEqual(len(everyone), 2)
        self.assertEqual(self.client.get(f"{API}/assignments", params={"school_year": "2025"}, headers=self.admin).json(), [])


class TeacherTopicsRouteTests(PlanApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.plan = self.create_plan()
        math = self.create_course(self.plan["id"], "Mathematics", weekly_hours=6)
        self.topics = {
            name: self.create_topic(math["id"], name, term=term)["id"]
            for name, term in [("Statistics", 2), ("Fractions", 1), ("Decimals", 1), ("Geometry", 2)]
        }
        self.assign(math["id"])

    def add_class(self, topic, status, group_id=None):
        self.db.add(
            ClassSession(
                group_id=group_id or self.classroom.group.id,
                topic=topic,
                topic_id=self.topics[topic],
                status=status,
            )
        )
        self.db.commit()

    def test_progress_follows_class_states(self):
        self.add_class("Fractions", ClassStatus.COMPLETED)
        self.add_class("Fractions", ClassStatus.COMPLETED)
        self.add_class("Decimals", ClassStatus.COMPLETED)
        self.add_class("Decimals", ClassStatus.SCHEDULED)
        self.add_class("Geometry", ClassStatus.DRAFT)

        body = self.client.get(f"{API}/teacher/topics", headers=self.teacher).json()

        course = body["courses"][0]
        self.assertEqual(course["name"], "Mathematics")
        self.assertEqual(course["group_name"], "5A")
        by_name = {topic["name"]: topic for topic in course["topics"]}
        self.assertEqual((by_name["Fractions"]["status"], by_name["Fractions"]["progress"]), ("completed", 100))
        self.assertEqual((by_name["Decimals"]["status"], by_name["Decimals"]["progress"]), ("in_progress", 50))
        self.assertEqual((by_name["Geometry"]["status"], by_name["Geometry"]["sessions"]), ("pending", 1))
        self.assertEqual((by_name["Statistics"]["status"], by_name["Statistics"]["sessions"]), ("pending", 0))
        self.assertEqual([topic["name"] for topic in course["topics"]], ["Fractions", "Decimals", "Statistics", "Geometry"])
        self.assertEqual(course["progress"], 25)
        self.assertEqual([(term["number"], term["progress"]) for term in course["terms"]], [(1, 75), (2, 0)])
        self.assertEqual(body["total_topics"], 4)
        self.assertEqual(body["completed_topics"], 1)
        self.assertEqual(body["assigned_courses"], 1)
        self.assertEqual(body["overall_progress"], 25)

        plan = self.client.get(f"{API}/plans/{self.plan['id']}", headers=self.admin).json()
        self.assertEqual(plan["coverage"], 50)

    def test_classes_of_unassigned_groups_are_ignored(self):
        other_group = Group(name="6B", grade="6", section="B")
        self.db.add(other_group)
        self.db.commit()
        self.add_class("Fractions", ClassStatus.COMPLETED, group_id=other_group.id)

        body = self.client.get(f"{API}/teacher/topics", headers=self.teacher).json()

        fractions = next(topic for topic in body["courses"][0]["topics"] if topic["name"] == "Fractions")
        self.assertEqual((fractions["status"], fractions["sessions"]), ("pending", 0))
        self.assertEqual(
            self.client.get(f"{API}/teacher/topics", params={"school_year": "2025"}, headers=self.teacher).json()[
                "courses"
            ],
            [],
        )

    def test_classes_link_to_plan_topics(self):
        payload = {"group_id": self.classroom.group.id, "topic": "Fractions", "topic_id": self.topics["Fractions"]}

        created = self.client.post(f"{API}/classes", json=payload, headers=self.teacher)
        missing = self.client.post(f"{API}/classes", json={**payload, "topic_id": 9999}, headers=self.teacher)

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["topic_id"], self.topics["Fractions"])
        self.assertEqual(missing.status_code, 404)

        changed = self.client.patch(
            f"{API}/classes/{created.json()['id']}", json={"topic_id": self.topics["Decimals"]}, headers=self.teacher
        )
        self.assertEqual(changed.json()["topic_id"], self.topics["Decimals"])


if __name__ == "__main__":
    unittest.main()
