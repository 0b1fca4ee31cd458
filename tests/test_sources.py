import asyncio

from cardsync.domain.models import SyncTarget
from cardsync.infrastructure.db import get_connection
from cardsync.infrastructure.db.repositories import RecordRepository
from cardsync.services.sync import (JsonApiSource, SyncOrchestrator,
                                    normalize_card)
from fakes import FakeFetcher

TARGET = SyncTarget(source="justtcg", external_id="set-1", category_id="pokemon")


def test_card_identity_fields_are_not_attributes():
    record = normalize_card(
        {"id": " 1 ", "cleanName": "Charizard", "number": "4", "rarity": None}, TARGET
    )

    assert record.external_id == "1"
    assert record.name == "Charizard"
    assert record.attributes == {"number": "4"}


def test_card_without_usable_id_is_skipped():
    assert normalize_card({"id": "   ", "name": "Blank"}, TARGET) is None
    assert normalize_card({"name": "No id"}, TARGET) is None
    assert normalize_card(["not", "a", "card"], TARGET) is None


def test_padded_and_plain_ids_are_stored_once(db_path):
    def respond(url, params):
        if int(params.get("offset", 0)) > 0:
            return {"data": []}
        return {"data": [{"id": " 1", "name": "Old"}, {"id": "1", "name": "New"}]}

    source = JsonApiSource(FakeFetcher(json_for=respond), "https://api.example/v1", page_size=2)

    result = asyncio.run(SyncOrchestrator(source, operation_id="op-1", db_path=db_path).run([TARGET]))

    assert result.targets[0].upserted == 1
    with get_connection(db_path) as conn:
        repo = RecordRepository(conn)
        assert repo.count_for_group("justtcg", "set-1") == 1
        assert repo.get("justtcg", "1")["name"] == "New"
