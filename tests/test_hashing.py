from __future__ import annotations

from datetime import date

from roadfeed.diff import canonical_bytes, content_hash
from roadfeed.models import FeatureChange, FeatureContent, LinearLocation, UpdateType


def _content(**overrides: object) -> FeatureContent:
    fields: dict[str, object] = {
        "id": 78712521,
        "type_id": 105,
        "valid_from": date(2021, 1, 1),
        "geometry": (((0.0, 0.0), (50.0, 0.0)),),
        "properties": {"maximumSpeedLimit": 80, "zone": "urban"},
        "locations": (LinearLocation(sequence_id=1, start_position=0.0, end_position=0.5),),
        "references": ("1:0.00000000-0.50000000",),
    }
    fields.update(overrides)
    return FeatureContent.model_validate(fields)


def test_equal_content_hashes_equal() -> None:
    assert content_hash(_content()) == content_hash(_content())


def test_property_order_does_not_matter() -> None:
    reordered = _content(properties={"zone": "urban", "maximumSpeedLimit": 80})
    assert canonical_bytes(reordered) == canonical_bytes(_content())


def test_update_type_is_not_hashed() -> None:
    content = _content()
    digest = content_hash(content)
    as_add = FeatureChange(
        feature_id=content.id,
        type_id=105,
        update_type=UpdateType.ADD,
        content=content,
        content_hash=digest,
    )
    as_modify = as_add.model_copy(update={"update_type": UpdateType.MODIFY})
    assert content_hash(as_add.content) == content_hash(as_modify.content) == digest


def test_any_property_change_changes_the_hash() -> None:
    base = content_hash(_content())
    assert content_hash(_content(properties={"maximumSpeedLimit": 60, "zone": "urban"})) != base
    assert content_hash(_content(properties={"maximumSpeedLimit": 80, "zone": "rural"})) != base
    assert content_hash(_content(properties={"maximumSpeedLimit": 80})) != base
    assert content_hash(_content(properties={"maximumSpeedLimit": 80.0, "zone": "urban"})) != base


def test_geometry_location_and_validity_are_hashed() -> None:
    base = content_hash(_content())
    assert content_hash(_content(geometry=(((0.0, 0.0), (50.0, 0.5)),))) != base
    assert content_hash(_content(valid_to=date(2026, 1, 1))) != base
    moved = (LinearLocation(sequence_id=1, start_position=0.0, end_position=0.6),)
    assert content_hash(_content(locations=moved)) != base


def test_negative_zero_is_normalized() -> None:
    positive = _content(geometry=(((0.0, 0.0), (50.0, 0.0)),))
    negative = _content(geometry=(((-0.0, 0.0), (50.0, -0.0)),))
    assert canonical_bytes(positive) == canonical_bytes(negative)


def test_seed_keys_the_hash() -> None:
    content = _content()
    assert content_hash(content, seed=1) != content_hash(content, seed=2)
    assert content_hash(content, seed=0) == content_hash(content)
