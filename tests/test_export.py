from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest
from conftest import utc

from roadfeed.config import SyncConfig
from roadfeed.export import DirectoryExporter
from roadfeed.models import FeatureChange, FeatureContent, UpdateType


def _change(feature_id: int, update_type: UpdateType) -> FeatureChange:
    return FeatureChange(
        feature_id=feature_id,
        type_id=105,
        update_type=update_type,
        content=FeatureContent(
            id=feature_id,
            type_id=105,
            valid_from=date(2021, 1, 1),
            geometry=(((0.0, 0.0), (10.0, 0.0)),),
            properties={"maximumSpeedLimit": 80},
        ),
        content_hash=2**63 + feature_id,
    )


@pytest.mark.asyncio
async def test_directory_exporter_writes_ndjson(config: SyncConfig, tmp_path: Path) -> None:
    exporter = DirectoryExporter(tmp_path / "out", config)

    await exporter.export(105, [_change(1, UpdateType.ADD), _change(2, UpdateType.REMOVE)], utc(hour=9))

    path = tmp_path / "out" / "SpeedLimit-20260115T090000Z.ndjson"
    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [(line["featureId"], line["updateType"]) for line in lines] == [(1, "Add"), (2, "Remove")]
    assert lines[0]["content"]["properties"] == {"maximumSpeedLimit": 80}
    assert lines[0]["contentHash"] == 2**63 + 1
    assert not list((tmp_path / "out").glob("*.tmp"))


@pytest.mark.asyncio
async def test_directory_exporter_never_overwrites(config: SyncConfig, tmp_path: Path) -> None:
    exporter = DirectoryExporter(tmp_path, config)

    await exporter.export(105, [_change(1, UpdateType.ADD)], utc())
    await exporter.export(105, [_change(1, UpdateType.MODIFY)], utc())
    await exporter.export(105, [], utc())

    assert sorted(p.name for p in tmp_path.glob("*.ndjson")) == [
        "SpeedLimit-20260115T120000Z-1.ndjson",
        "SpeedLimit-20260115T120000Z.ndjson",
    ]
