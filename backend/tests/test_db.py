from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from dealdesk.db import (
    ARTIFACT_STATUS_FAILED,
    ARTIFACT_STATUS_GENERATED,
    ARTIFACT_STATUS_GENERATING,
    abandon_artifact_reservation,
    create_opportunity,
    finalize_artifact,
    get_artifact,
    get_or_create_client,
    get_or_create_responsible,
    init_db,
    list_artifacts,
    release_artifact_reservation,
    reserve_artifact_version,
)
from dealdesk.errors import PersistenceError


@pytest.fixture()
def opportunity_id() -> int:
    init_db()
    client, _ = get_or_create_client("Acme Corp")
    responsible, _ = get_or_create_responsible("Jane Doe")
    opportunity = create_opportunity(
        name="Acme Renewal",
        description=None,
        client_id=int(client["client_id"]),
        responsible_id=int(responsible["responsible_id"]),
        generated_by="system",
    )
    return int(opportunity["opportunity_id"])


def _reserve(opportunity_id: int, artifact_type: str = "DSP") -> dict[str, object]:
    return reserve_artifact_version(
        opportunity_id=opportunity_id,
        artifact_type=artifact_type,
        artifact_name="Deal Strategy Plan",
        generated_by="system",
    )


def test_versions_increase_per_opportunity_and_type(opportunity_id: int) -> None:
    first = _reserve(opportunity_id)
    second = _reserve(opportunity_id)
    other_type = _reserve(opportunity_id, artifact_type="PROPOSAL")

    assert (first["version"], second["version"], other_type["version"]) == (1, 2, 1)
    assert first["status"] == ARTIFACT_STATUS_GENERATING
    assert len(list_artifacts(opportunity_id, include_unfinished=True)) == 3


def test_concurrent_reservations_get_distinct_versions(opportunity_id: int) -> None:
    with ThreadPoolExecutor(max_workers=4) as pool:
        versions = sorted(int(item["version"]) for item in pool.map(lambda _: _reserve(opportunity_id), range(6)))
    assert versions == [1, 2, 3, 4, 5, 6]


def test_release_only_removes_unfinished_reservations(opportunity_id: int) -> None:
    pending = _reserve(opportunity_id)
    done = _reserve(opportunity_id)
    finalize_artifact(int(done["artifact_id"]), artifact_url="https://x", storage_path="opportunities/1/dsp-v2.md")

    release_artifact_reservation(int(pending["artifact_id"]))
    release_artifact_reservation(int(done["artifact_id"]))

    remaining = list_artifacts(opportunity_id)
    assert [item["artifact_id"] for item in remaining] == [done["artifact_id"]]
    assert remaining[0]["status"] == ARTIFACT_STATUS_GENERATED


def test_released_version_is_reused(opportunity_id: int) -> None:
    pending = _reserve(opportunity_id)
    release_artifact_reservation(int(pending["artifact_id"]))
    assert _reserve(opportunity_id)["version"] == 1


def test_finalize_missing_artifact_raises(opportunity_id: int) -> None:
    with pytest.raises(PersistenceError):
        finalize_artifact(9999, artifact_url="https://x", storage_path="p.md")


def test_listing_hides_unfinished_reservations(opportunity_id: int) -> None:
    pending = _reserve(opportunity_id)
    failed = _reserve(opportunity_id)
    done = _reserve(opportunity_id)
    abandon_artifact_reservation(int(failed["artifact_id"]), storage_path="opportunities/1/dsp-v2.md")
    finalize_artifact(int(done["artifact_id"]), artifact_url="https://x", storage_path="opportunities/1/dsp-v3.md")

    assert [item["version"] for item in list_artifacts(opportunity_id)] == [3]
    every = {item["version"]: item["status"] for item in list_artifacts(opportunity_id, include_unfinished=True)}
    assert every == {1: ARTIFACT_STATUS_GENERATING, 2: ARTIFACT_STATUS_FAILED, 3: ARTIFACT_STATUS_GENERATED}
    assert get_artifact(int(pending["artifact_id"]), status=ARTIFACT_STATUS_GENERATED) is None
    assert get_artifact(int(done["artifact_id"]), status=ARTIFACT_STATUS_GENERATED) is not None


def test_abandoned_version_is_not_reused(opportunity_id: int) -> None:
    pending = _reserve(opportunity_id)
    abandon_artifact_reservation(int(pending["artifact_id"]), storage_path="opportunities/1/dsp-v1.md")
    release_artifact_reservation(int(pending["artifact_id"]))

    assert get_artifact(int(pending["artifact_id"]))["status"] == ARTIFACT_STATUS_FAILED
    assert _reserve(opportunity_id)["version"] == 2


def test_finalize_refuses_abandoned_reservation(opportunity_id: int) -> None:
    pending = _reserve(opportunity_id)
    abandon_artifact_reservation(int(pending["artifact_id"]), storage_path="opportunities/1/dsp-v1.md")
    with pytest.raises(PersistenceError):
        finalize_artifact(
            int(pending["artifact_id"]),
            artifact_url="https://x",
            storage_path="opportunities/1/dsp-v1.md",
        )


def test_get_artifact_can_scope_to_opportunity(opportunity_id: int) -> None:
    artifact_id = int(_reserve(opportunity_id)["artifact_id"])
    assert get_artifact(artifact_id, opportunity_id=opportunity_id) is not None
    assert get_artifact(artifact_id, opportunity_id=opportunity_id + 1) is None


def test_get_or_create_matches_names_case_insensitively(opportunity_id: int) -> None:
    client, created = get_or_create_client("  acme   corp ")
    responsible, responsible_created = get_or_create_responsible("JANE DOE")
    assert created is False
    assert client["client_name"] == "Acme Corp"
    assert responsible_created is False
    assert responsible["is_active"] is True


def test_concurrent_get_or_create_client_creates_one_row(opportunity_id: int) -> None:
    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: get_or_create_client("Initech"), range(8)))

    assert sum(1 for _, created in results if created) == 1
    assert len({int(client["client_id"]) for client, _ in results}) == 1
