import pytest

from chaser.config import ObjectsHandlerParams


def test_defaults():
    p = ObjectsHandlerParams()
    assert p.world_frame_id == "/world"
    assert p.target_frame_id == "/target__base_footprint"
    assert p.chaser_frame_id == "/firefly/base_link"
    assert p.min_z == 0.4
    assert p.edf_max_dist == 2.0
    assert p.edf_max_viz_dist == 0.5
    assert p.edf_resolution == 0.5
    assert p.edf_stride_resolution == 0.5
    assert p.is_octomap_full is True
    assert p.grid_rounding == "ceil"


def test_from_yaml_flat(tmp_path):
    path = tmp_path / "objects.yaml"
    path.write_text("min_z: 1.0\nedf_resolution: 0.25\nis_octomap_full: false\n")
    p = ObjectsHandlerParams.from_yaml(str(path))
    assert p.min_z == 1.0
    assert p.edf_resolution == 0.25
    assert p.is_octomap_full is False
    assert p.edf_max_dist == 2.0


def test_from_yaml_section(tmp_path):
    path = tmp_path / "objects.yaml"
    path.write_text("objects_handler:\n  world_frame_id: /map\n  grid_rounding: floor\n")
    p = ObjectsHandlerParams.from_yaml(str(path))
    assert p.world_frame_id == "/map"
    assert p.grid_rounding == "floor"


def test_from_yaml_empty_file(tmp_path):
    path = tmp_path / "objects.yaml"
    path.write_text("")
    assert ObjectsHandlerParams.from_yaml(str(path)) == ObjectsHandlerParams()


def test_unknown_keys_are_rejected():
    with pytest.raises(ValueError, match="edf_resolutoin"):
        ObjectsHandlerParams.from_dict({"edf_resolutoin": 0.5})


@pytest.mark.parametrize(
    "override",
    [
        {"edf_resolution": 0.0},
        {"edf_stride_resolution": -1.0},
        {"edf_max_dist": 0.0},
        {"edf_max_viz_dist": -0.1},
        {"grid_rounding": "nearest"},
    ],
)
def test_invalid_values_are_rejected(override):
    with pytest.raises(ValueError):
        ObjectsHandlerParams(**override)
