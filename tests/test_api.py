"""
HTTP tests for the FastAPI app with auth and database dependencies overridden.
"""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from factories import add_activity, add_adjustment, add_completion, add_member


def now_utc():
    return datetime.now(timezone.utc)


class TestRankingEndpoint:
    @pytest.mark.asyncio
    async def test_response_shape(self, client, db, caller):
        ana = await add_member(db, "Ana")
        bia = await add_member(db, "Bia")
        await add_completion(db, ana, 10, now_utc())
        await add_adjustment(db, ana, 5, now_utc())
        await add_adjustment(db, bia, -3, now_utc())
        caller.as_participant(ana.id)

        r = await client.get("/ranking")
        assert r.status_code == 200
        body = r.json()
        first = body["ranking"][0]
        assert first == {
            "memberId": str(ana.id),
            "displayName": "Ana",
            "email": "ana@club.test",
            "totalPoints": 15,
            "activityPoints": 10,
            "adjustmentPoints": 5,
            "activitiesCompletedCount": 1,
            "position": 1,
        }
        assert body["ranking"][1]["totalPoints"] == -3
        stats = body["stats"]
        assert stats["totalMembers"] == 2
        assert stats["period"] == "all"
        assert stats["averagePoints"] == 6
        assert stats["topPerformer"]["memberId"] == str(ana.id)
        assert "startDate" not in stats and "endDate" not in stats

    @pytest.mark.asyncio
    async def test_month_includes_dates(self, client, db):
        await add_member(db, "Ana")
        r = await client.get("/ranking", params={"period": "month"})
        assert r.status_code == 200
        stats = r.json()["stats"]
        assert stats["period"] == "month"
        start = datetime.fromisoformat(stats["startDate"].replace("Z", "+00:00"))
        assert start.day == 1 and start.hour == 0
        assert datetime.fromisoformat(stats["endDate"].replace("Z", "+00:00")).second == 59

    @pytest.mark.asyncio
    async def test_empty_ranking(self, client):
        r = await client.get("/ranking", params={"period": "year"})
        assert r.status_code == 200
        assert r.json()["ranking"] == []
        assert r.json()["stats"]["topPerformer"] is None
        assert r.json()["stats"]["averagePoints"] == 0

    @pytest.mark.asyncio
    async def test_limit(self, client, db):
        for n in range(5):
            await add_member(db, f"M{n}")
        r = await client.get("/ranking", params={"limit": 2})
        assert len(r.json()["ranking"]) == 2
        assert r.json()["stats"]["totalMembers"] == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{"period": "week"}, {"limit": 0}, {"limit": -3}, {"limit": "x"}])
    async def test_bad_query_rejected(self, client, params):
        r = await client.get("/ranking", params=params)
        assert r.status_code == 422

    @pytest.mark.asyncio
    async def test_storage_failure_is_generic_500(self, client, db, monkeypatch):
        async def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(db, "execute", broken)
        r = await client.get("/ranking")
        assert r.status_code == 500
        assert r.json() == {"detail": "Internal server error"}

    @pytest.mark.asyncio
    async def test_my_standing(self, client, db, caller):
        ana = await add_member(db, "Ana")
        bia = await add_member(db, "Bia")
        await add_completion(db, bia, 20, now_utc())
        caller.as_participant(ana.id)
        r = await client.get("/ranking/me")
        assert r.status_code == 200
        assert r.json()["position"] == 2

    @pytest.mark.asyncio
    async def test_my_standing_for_admin_is_404(self, client, caller):
        caller.as_admin()
        r = await client.get("/ranking/me")
        assert r.status_code == 404


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        from app.deps import get_caller
        from app.main import app

        del app.dependency_overrides[get_caller]
        r = await client.get("/ranking")
        assert r.status_code == 401

    @pytest.mark.asyncio
    async def test_participant_cannot_record_adjustment(self, client, db, caller):
        ana = await add_member(db, "Ana")
        caller.as_participant(ana.id)
        r = await client.post("/adjustments", json={"member_id": str(ana.id), "points": 100})
        assert r.status_code == 403


class TestFactEndpoints:
    @pytest.mark.asyncio
    async def test_completion_flow(self, client, db):
        ana = await add_member(db, "Ana")
        act = await add_activity(db, points=10)
        payload = {"member_id": str(ana.id), "activity_id": str(act.id), "points_awarded": 8}

        r = await client.post("/completions", json=payload)
        assert r.status_code == 201
        assert r.json()["points_awarded"] == 8

        r = await client.post("/completions", json=payload)
        assert r.status_code == 400

        r = await client.get("/completions", params={"member_id": str(ana.id)})
        assert r.json()["total"] == 1
        assert r.json()["pages"] == 1

    @pytest.mark.asyncio
    async def test_zero_adjustment_rejected(self, client, db):
        ana = await add_member(db, "Ana")
        r = await client.post("/adjustments", json={"member_id": str(ana.id), "points": 0})
        assert r.status_code == 422

    @pytest.mark.asyncio
    async def test_participant_sees_only_own_completions(self, client, db, caller):
        ana = await add_member(db, "Ana")
        bia = await add_member(db, "Bia")
        await add_completion(db, ana, 5, now_utc())
        await add_completion(db, bia, 5, now_utc())
        caller.as_participant(ana.id)

        r = await client.get("/completions")
        assert r.json()["total"] == 1
        r = await client.get("/completions", params={"member_id": str(bia.id)})
        assert r.status_code == 403


class TestMemberEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_delete(self, client):
        r = await client.post("/members", json={"display_name": "Ana", "email": "ana@club.test"})
        assert r.status_code == 201
        member_id = r.json()["id"]
        assert r.json()["role"] == "PARTICIPANT"

        r = await client.post("/members", json={"display_name": "Ana B", "email": "ana@club.test"})
        assert r.status_code == 400

        r = await client.delete(f"/members/{member_id}")
        assert r.status_code == 200
        r = await client.delete(f"/members/{member_id}")
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_with_completions_rejected(self, client, db):
        ana = await add_member(db, "Ana")
        await add_completion(db, ana, 5, now_utc())
        r = await client.delete(f"/members/{ana.id}")
        assert r.status_code == 400


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        r = await client.get("/health")
        assert r.json() == {"status": "ok", "service": "club-ranking-svc"}


class TestMemberAdministration:
    @pytest.mark.asyncio
    async def test_update_member(self, client, db):
        ana = await add_member(db, "Ana")
        await add_member(db, "Bia")

        r = await client.put(f"/members/{ana.id}", json={"display_name": "Ana Maria", "role": "ADMIN"})
        assert r.status_code == 200
        assert r.json()["display_name"] == "Ana Maria"
        assert r.json()["role"] == "ADMIN"
        assert r.json()["email"] == "ana@club.test"

        r = await client.put(f"/members/{ana.id}", json={"email": "bia@club.test"})
        assert r.status_code == 400
        assert r.json() == {"detail": "Email already registered"}

    @pytest.mark.asyncio
    async def test_update_unknown_member(self, client):
        r = await client.put(f"/members/{uuid.uuid4()}", json={"display_name": "Nobody"})
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_update_requires_admin(self, client, db, caller):
        ana = await add_member(db, "Ana")
        caller.as_participant(ana.id)
        r = await client.put(f"/members/{ana.id}", json={"role": "ADMIN"})
        assert r.status_code == 403

    @pytest.mark.asyncio
    async def test_list_includes_points(self, client, db):
        ana = await add_member(db, "Ana")
        await add_member(db, "Bia")
        await add_completion(db, ana, 10, now_utc())
        await add_completion(db, ana, 5, now_utc())
        await add_adjustment(db, ana, -3, now_utc())

        r = await client.get("/members", params={"search": "ana"})
        assert r.status_code == 200
        body = r.json()
        assert body["total"] == 1 and body["pages"] == 1
        [row] = body["members"]
        assert row["id"] == str(ana.id)
        assert row["total_points"] == 12
        assert row["activities_completed"] == 2

    @pytest.mark.asyncio
    async def test_list_paging(self, client, db):
        for n in range(3):
            await add_member(db, f"M{n}")
        r = await client.get("/members", params={"page": 2, "limit": 2})
        body = r.json()
        assert body["total"] == 3
        assert body["pages"] == 2
        assert len(body["members"]) == 1
        assert body["members"][0]["total_points"] == 0


class TestMemberHistoryEndpoint:
    @pytest.mark.asyncio
    async def test_own_history(self, client, db, caller):
        ana = await add_member(db, "Ana")
        await add_completion(db, ana, 10, now_utc())
        await add_adjustment(db, ana, 4, now_utc())
        caller.as_participant(ana.id)

        r = await client.get(f"/members/{ana.id}/history", params={"period": "month"})
        assert r.status_code == 200
        body = r.json()
        assert body["total_points"] == 14
        assert body["activities_completed"] == 1
        assert len(body["completions"]) == 1
        assert [a["points"] for a in body["adjustments"]] == [4]
        assert body["start_date"] is not None

    @pytest.mark.asyncio
    async def test_history_agrees_with_ranking(self, client, db, caller):
        ana = await add_member(db, "Ana")
        await add_completion(db, ana, 10, now_utc())
        await add_adjustment(db, ana, -25, now_utc())
        caller.as_participant(ana.id)

        history = (await client.get(f"/members/{ana.id}/history")).json()
        standing = (await client.get("/ranking/me")).json()
        assert history["total_points"] == standing["totalPoints"] == -15

    @pytest.mark.asyncio
    async def test_other_members_history_forbidden(self, client, db, caller):
        ana = await add_member(db, "Ana")
        bia = await add_member(db, "Bia")
        caller.as_participant(ana.id)
        r = await client.get(f"/members/{bia.id}/history")
        assert r.status_code == 403

    @pytest.mark.asyncio
    async def test_bad_period_rejected(self, client, db):
        ana = await add_member(db, "Ana")
        r = await client.get(f"/members/{ana.id}/history", params={"period": "week"})
        assert r.status_code == 422


class TestActivityEndpoints:
    @pytest.mark.asyncio
    async def test_crud(self, client):
        r = await client.post("/activities", json={"name": "Hike", "points": 10, "category": "outdoor"})
        assert r.status_code == 201
        activity_id = r.json()["id"]

        r = await client.post("/activities", json={"name": "Hike", "points": 20})
        assert r.status_code == 400

        r = await client.put(f"/activities/{activity_id}", json={"points": 15, "description": "ridge trail"})
        assert r.status_code == 200
        assert r.json()["points"] == 15
        assert r.json()["category"] == "outdoor"

        r = await client.delete(f"/activities/{activity_id}")
        assert r.status_code == 200
        r = await client.delete(f"/activities/{activity_id}")
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_rename_to_taken_name(self, client, db):
        await add_activity(db, name="Hike")
        swim = await add_activity(db, name="Swim")
        r = await client.put(f"/activities/{swim.id}", json={"name": "Hike"})
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_clear_due_date(self, client, db):
        act = await add_activity(db, name="Hike", due_date=now_utc())
        r = await client.put(f"/activities/{act.id}", json={"due_date": None})
        assert r.status_code == 200
        assert r.json()["due_date"] is None

    @pytest.mark.asyncio
    async def test_delete_completed_activity_rejected(self, client, db):
        ana = await add_member(db, "Ana")
        c = await add_completion(db, ana, 10, now_utc())
        r = await client.delete(f"/activities/{c.activity_id}")
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_list_with_filters(self, client, db, caller):
        ana = await add_member(db, "Ana")
        hike = await add_activity(db, name="Hike", category="outdoor")
        await add_activity(db, name="Knots", category="skills")
        await add_completion(db, ana, 10, now_utc(), activity=hike)
        caller.as_participant(ana.id)

        r = await client.get("/activities", params={"category": "outdoor"})
        assert r.status_code == 200
        body = r.json()
        assert body["total"] == 1
        [row] = body["activities"]
        assert row["name"] == "Hike"
        assert row["is_active"] is True
        assert row["completions_count"] == 1

    @pytest.mark.asyncio
    async def test_participant_cannot_edit(self, client, db, caller):
        act = await add_activity(db, name="Hike")
        caller.as_participant()
        assert (await client.put(f"/activities/{act.id}", json={"points": 1})).status_code == 403
        assert (await client.delete(f"/activities/{act.id}")).status_code == 403


class TestTimestampInput:
    @pytest.mark.asyncio
    async def test_naive_completed_at_rejected(self, client, db):
        ana = await add_member(db, "Ana")
        act = await add_activity(db)
        payload = {
            "member_id": str(ana.id), "activity_id": str(act.id), "points_awarded": 5,
            "completed_at": "2024-03-05T10:00:00",
        }
        r = await client.post("/completions", json=payload)
        assert r.status_code == 422

    @pytest.mark.asyncio
    async def test_offset_completed_at_stored_as_utc(self, client, db):
        ana = await add_member(db, "Ana")
        act = await add_activity(db)
        payload = {
            "member_id": str(ana.id), "activity_id": str(act.id), "points_awarded": 5,
            "completed_at": "2024-03-31T22:30:00-03:00",
        }
        r = await client.post("/completions", json=payload)
        assert r.status_code == 201
        stored = datetime.fromisoformat(r.json()["completed_at"].replace("Z", "+00:00"))
        assert stored == datetime(2024, 4, 1, 1, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_naive_due_date_rejected(self, client):
        r = await client.post("/activities", json={"name": "Hike", "points": 5, "due_date": "2024-03-05T10:00:00"})
        assert r.status_code == 422

    @pytest.mark.asyncio
    async def test_naive_date_filter_rejected(self, client):
        r = await client.get("/completions", params={"date_from": "2024-03-05T10:00:00"})
        assert r.status_code == 422


class TestStorageFailures:
    @pytest.fixture
    def broken_db(self, db, monkeypatch):
        async def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(db, "execute", broken)
        return db

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/completions", "/members", "/activities"])
    async def test_listing_failure_is_generic_500(self, client, broken_db, path):
        r = await client.get(path)
        assert r.status_code == 500
        assert r.json() == {"detail": "Internal server error"}

    @pytest.mark.asyncio
    async def test_write_path_lookup_failure_is_generic_500(self, client, broken_db):
        r = await client.post("/adjustments", json={"member_id": str(uuid.uuid4()), "points": 5})
        assert r.status_code == 500
        assert r.json() == {"detail": "Internal server error"}
