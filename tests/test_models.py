from mediamirror.models import ItemSyncData, RemoteItem, SyncResult
from mediamirror.services.metrics import SyncMetricsTracker, create_sync_result


def test_remote_item_drops_empty_provider_ids():
    item = RemoteItem.model_validate(
        {"Id": "m1", "Name": "Heat", "Type": "Movie", "ProviderIds": {"Tmdb": 949, "Imdb": ""}}
    )

    assert item.provider_ids == {"Tmdb": "949"}


def test_remote_item_keeps_unknown_fields():
    item = RemoteItem.model_validate({"Id": "m1", "Studios": [{"Name": "Warner"}]})

    assert item.model_extra == {"Studios": [{"Name": "Warner"}]}


def test_sync_result_serialises_with_camel_case_keys():
    tracker = SyncMetricsTracker()
    tracker.increment_items_inserted(3)
    tracker.increment_api_requests()

    result = create_sync_result(
        "partial",
        ItemSyncData(items_inserted=3, libraries_processed=1),
        tracker.finish(),
        errors=["Item x: boom"],
    )
    payload = result.model_dump(mode="json", by_alias=True)

    assert isinstance(result, SyncResult)
    assert payload["status"] == "partial"
    assert payload["data"]["itemsInserted"] == 3
    assert payload["data"]["librariesProcessed"] == 1
    assert payload["metrics"]["apiRequests"] == 1
    assert payload["metrics"]["finishedAt"] is not None
    assert payload["metrics"]["durationMs"] >= 0
    assert payload["errors"] == ["Item x: boom"]
