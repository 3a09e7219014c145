"""Integration tests for PushEngine: change log in, batches out, statuses back."""
import pytest
from sqlmodel import Session, select

from replisync.models.catalog import Customer, Product
from replisync.models.change_log import ChangeLogEntry, ChangeStatus
from replisync.sync.push import RECORD_NOT_FOUND, PushEngine
from replisync.sync.transport import TransportError


def _statuses(engine):
    with Session(engine) as s:
        return {
            (e.entity_type, e.entity_id): (e.status, e.attempts, e.error_message)
            for e in s.exec(select(ChangeLogEntry)).all()
        }


def _pushed(client, entity_type):
    for call in client.push.await_args_list:
        if call.args[0] == entity_type:
            return call.args[1]
    return None


class TestPushEntity:
    @pytest.mark.asyncio
    async def test_sends_current_row_state(self, engine, descriptors, change_log, tracker, mock_client):
        with Session(engine) as s:
            customer = Customer(name="Ada", email="old@example.com")
            s.add(customer)
            s.commit()
        # Written behind the change log's back: push must re-read the row
        with Session(engine) as s:
            row = s.get(Customer, 1)
            row.email = "new@example.com"
            s.add(row)
            tracker.uninstall()
            s.commit()

        result = await PushEngine(mock_client, engine, change_log).push_entity(descriptors["customers"])

        assert result.success and result.count == 1
        [record] = _pushed(mock_client, "customers")
        assert record["id"] == 1
        assert record["email"] == "new@example.com"
        assert record["action"] == "create"
        assert record["sync_log_id"] == 1
        assert _statuses(engine)[("customers", "1")] == (ChangeStatus.COMPLETED, 1, None)

    @pytest.mark.asyncio
    async def test_delete_sends_stored_snapshot(self, engine, descriptors, change_log, mock_client):
        entry = change_log.record_change("customers", 9, "delete", {"id": 9, "name": "Gone"})

        await PushEngine(mock_client, engine, change_log).push_entity(descriptors["customers"])

        assert _pushed(mock_client, "customers") == [{
            "id": 9,
            "action": "delete",
            "data": {"id": 9, "name": "Gone"},
            "sync_log_id": entry.id,
        }]

    @pytest.mark.asyncio
    async def test_nothing_to_push(self, engine, descriptors, change_log, mock_client):
        result = await PushEngine(mock_client, engine, change_log).push_entity(descriptors["customers"])

        assert result.success
        assert result.count == 0
        assert result.message == "No changes to push for customers"
        mock_client.push.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_failure_marks_batch_failed(
        self, engine, descriptors, change_log, tracker, client_factory
    ):
        with Session(engine) as s:
            s.add(Customer(name="Ada"))
            s.add(Customer(name="Bob"))
            s.commit()
        client = client_factory(push_error={"customers": TransportError("Server responded with HTTP 500")})

        result = await PushEngine(client, engine, change_log).push_entity(descriptors["customers"])

        assert not result.success
        statuses = _statuses(engine)
        assert statuses[("customers", "1")] == (ChangeStatus.FAILED, 1, "Server responded with HTTP 500")
        assert statuses[("customers", "2")] == (ChangeStatus.FAILED, 1, "Server responded with HTTP 500")

    @pytest.mark.asyncio
    async def test_failed_entries_retried_next_cycle(
        self, engine, descriptors, change_log, tracker, client_factory
    ):
        with Session(engine) as s:
            s.add(Customer(name="Ada"))
            s.commit()
        failing = client_factory(push_error={"customers": TransportError("Request timed out after 25.0s")})
        await PushEngine(failing, engine, change_log).push_entity(descriptors["customers"])

        healthy = client_factory()
        result = await PushEngine(healthy, engine, change_log).push_entity(descriptors["customers"])

        assert result.count == 1
        assert _statuses(engine)[("customers", "1")] == (ChangeStatus.COMPLETED, 2, None)

    @pytest.mark.asyncio
    async def test_missing_record_fails_only_that_entry(self, engine, descriptors, change_log, mock_client):
        with Session(engine) as s:
            s.add(Customer(id=1, name="Ada"))
            s.commit()
        change_log.record_change("customers", 1, "update", {"id": 1})
        change_log.record_change("customers", 404, "update", {"id": 404})

        result = await PushEngine(mock_client, engine, change_log).push_entity(descriptors["customers"])

        assert result.count == 1
        assert [r["id"] for r in _pushed(mock_client, "customers")] == [1]
        statuses = _statuses(engine)
        assert statuses[("customers", "1")][0] == ChangeStatus.COMPLETED
        assert statuses[("customers", "404")] == (ChangeStatus.FAILED, 1, RECORD_NOT_FOUND)

    @pytest.mark.asyncio
    async def test_only_missing_records_reports_failure(self, engine, descriptors, change_log, mock_client):
        change_log.record_change("customers", 404, "update", {"id": 404})
        change_log.record_change("customers", 405, "update", {"id": 405})

        result = await PushEngine(mock_client, engine, change_log).push_entity(descriptors["customers"])

        assert not result.success
        assert result.count == 0
        assert result.message == "Failed to build 2 records for customers"
        mock_client.push.assert_not_awaited()
        assert change_log.stats()["failed"] == 2

    @pytest.mark.asyncio
    async def test_unbuildable_entity_listed_as_failed(self, engine, descriptors, change_log, mock_client):
        change_log.record_change("customers", 404, "update", {"id": 404})

        result = await PushEngine(mock_client, engine, change_log).push_all(descriptors)

        assert result.failed_entities == ["customers"]

    @pytest.mark.asyncio
    async def test_completed_entries_not_resent(self, engine, descriptors, change_log, tracker, mock_client):
        with Session(engine) as s:
            s.add(Customer(name="Ada"))
            s.commit()
        push = PushEngine(mock_client, engine, change_log)

        await push.push_entity(descriptors["customers"])
        second = await push.push_entity(descriptors["customers"])

        assert second.count == 0
        assert mock_client.push.await_count == 1


class TestPushAll:
    @pytest.mark.asyncio
    async def test_failure_in_one_entity_isolated(
        self, engine, descriptors, change_log, tracker, client_factory
    ):
        with Session(engine) as s:
            s.add(Customer(name="Ada"))
            s.add(Product(sku="P-1", name="Widget"))
            s.commit()
        client = client_factory(push_error={"customers": TransportError("Connection failed: refused")})

        result = await PushEngine(client, engine, change_log).push_all(descriptors)

        assert result.success
        assert result.failed_entities == ["customers"]
        assert result.details["products"].count == 1
        assert result.details["settings"].count == 0
        statuses = _statuses(engine)
        assert statuses[("customers", "1")][0] == ChangeStatus.FAILED
        assert statuses[("products", "1")][0] == ChangeStatus.COMPLETED
