import json

import pytest

from config import (
    REGION_CONNECTIVITY,
    TRACKING_MAX_AREA_CHANGE,
    TRACKING_MAX_DIST,
    TRAJECTORY_MIN_TRACK_LENGTH,
)
from core.dto import GatingParameters, TrackingRunDTO, TrajectoryParameters


def test_dto_uses_config_defaults():
    dto = TrackingRunDTO()
    assert dto.gating.max_dist == TRACKING_MAX_DIST
    assert dto.gating.max_area_change == TRACKING_MAX_AREA_CHANGE
    assert dto.gating.connectivity == REGION_CONNECTIVITY
    assert dto.trajectory.min_track_length == TRAJECTORY_MIN_TRACK_LENGTH


def test_dto_from_empty_dict_uses_defaults():
    assert TrackingRunDTO.from_dict({}) == TrackingRunDTO()


def test_dto_from_nested_dict():
    dto = TrackingRunDTO.from_dict({
        "input_path": "masks.npy",
        "pre_labeled": True,
        "gating": {"max_dist": 12, "connectivity": 8, "auto_distance": False},
        "trajectory": {"min_track_length": 5, "mask_include": False},
        "export_formats": ["npy"],
    })

    assert dto.pre_labeled
    assert dto.gating.max_dist == 12.0
    assert dto.gating.connectivity == 8
    assert not dto.gating.auto_distance
    assert dto.trajectory == TrajectoryParameters(min_track_length=5, mask_include=False)
    assert dto.export_formats == ("npy",)
    assert TrackingRunDTO.from_dict(dto.to_dict()) == dto


def test_gating_parameters_validation():
    with pytest.raises(ValueError):
        GatingParameters(connectivity=6)
    with pytest.raises(ValueError):
        GatingParameters(max_dist=-1.0)


def test_with_max_dist_keeps_other_fields():
    params = GatingParameters(max_area_change=0.3, connectivity=8)
    updated = params.with_max_dist(7)

    assert updated.max_dist == 7.0
    assert updated.max_area_change == 0.3
    assert updated.connectivity == 8
    assert params.max_dist == TRACKING_MAX_DIST


def test_dto_from_config_files(tmp_path):
    yaml_path = tmp_path / "run.yaml"
    yaml_path.write_text(
        "input_path: frames/\n"
        "gating:\n"
        "  max_dist: 9\n"
        "trajectory:\n"
        "  mask_factor: 2.5\n",
        encoding="utf-8",
    )
    json_path = tmp_path / "run.json"
    json_path.write_text(json.dumps({"input_path": "frames/", "remove_excluded": True}), encoding="utf-8")

    from_yaml = TrackingRunDTO.from_yaml(str(yaml_path))
    from_json = TrackingRunDTO.from_json(str(json_path))

    assert from_yaml.gating.max_dist == 9.0
    assert from_yaml.trajectory.mask_factor == 2.5
    assert from_json.remove_excluded
    assert from_json.input_path == "frames/"


def test_single_export_format_string(tmp_path):
    yaml_path = tmp_path / "run.yaml"
    yaml_path.write_text("input_path: masks.npy\nexport_formats: npy\n", encoding="utf-8")

    assert TrackingRunDTO.from_yaml(str(yaml_path)).export_formats == ("npy",)
    assert TrackingRunDTO.from_dict({"export_formats": "csv"}).export_formats == ("csv",)
