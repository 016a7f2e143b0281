import copy
import json

import pytest

from github_frontier import config
from github_frontier.baseline import build_baseline, load_baseline
from github_frontier.errors import BaselineConfigError


def _raw():
    return copy.deepcopy(config.BASELINE)


def test_builtin_baseline_loads():
    baseline = load_baseline()
    assert len(baseline.strata) == 7
    assert baseline.frontier_stratum.is_open
    assert baseline.frontier_stratum.size == config.FRONTIER_M - 250_000_000
    assert baseline.fixed_variance > 0


def test_zero_sample_count_fails_fast():
    raw = _raw()
    raw["strata"]["F3"]["sample_count"] = 0
    with pytest.raises(BaselineConfigError, match="F3"):
        build_baseline(raw)


def test_valid_count_above_sample_count():
    raw = _raw()
    raw["strata"]["F1"]["valid_count"] = 612
    with pytest.raises(BaselineConfigError, match="valid_count"):
        build_baseline(raw)


def test_gap_between_strata():
    raw = _raw()
    raw["strata"]["F2"]["start"] = 10_000_002
    with pytest.raises(BaselineConfigError, match="contiguous"):
        build_baseline(raw)


def test_open_stratum_must_be_last():
    raw = _raw()
    raw["strata"]["F3"]["end"] = None
    with pytest.raises(BaselineConfigError, match="last"):
        build_baseline(raw)


def test_last_stratum_must_be_open():
    raw = _raw()
    raw["strata"]["F7"]["end"] = 261_712_000
    with pytest.raises(BaselineConfigError, match="open-ended"):
        build_baseline(raw)


def test_size_must_match_range():
    raw = _raw()
    raw["strata"]["F1"]["size"] = 9_999_999
    with pytest.raises(BaselineConfigError, match="size"):
        build_baseline(raw)


def test_reported_se_smaller_than_open_stratum():
    raw = _raw()
    raw["reported_standard_error"] = 1_000
    with pytest.raises(BaselineConfigError, match="Reported SE"):
        build_baseline(raw)


def test_missing_field():
    raw = _raw()
    del raw["strata"]["F4"]["valid_count"]
    with pytest.raises(BaselineConfigError, match="F4"):
        build_baseline(raw)


def test_missing_top_level_keys():
    with pytest.raises(BaselineConfigError):
        build_baseline({"strata": {}})


def test_strata_as_list(tmp_path):
    raw = _raw()
    raw["strata"] = [dict(v, id=k) for k, v in raw["strata"].items()]
    path = tmp_path / "baseline.json"
    path.write_text(json.dumps(raw))

    baseline = load_baseline(str(path))
    assert [s.stratum_id for s in baseline.strata] == ["F1", "F2", "F3", "F4", "F5", "F6", "F7"]


def test_unreadable_file(tmp_path):
    path = tmp_path / "baseline.json"
    path.write_text("{not json")
    with pytest.raises(BaselineConfigError):
        load_baseline(str(path))
    with pytest.raises(BaselineConfigError):
        load_baseline(str(tmp_path / "missing.json"))
