import json

import numpy as np
import pandas as pd

from trendbt.engine import BacktestResult, Trade
from trendbt.reports import write_dataframe_csv, write_json_report


def test_json_report_handles_results_and_numpy(tmp_path):
    result = BacktestResult.from_trades([Trade(0, 10, 100.0, 102.0, 2.0, "TP")], bars=50)
    path = tmp_path / "nested" / "report.json"
    write_json_report({
        "result": result,
        "count": np.int64(3),
        "ratio": np.float64(0.5),
        "regimes": {"RANGE", "BULL"},
        "curve": np.array([1.0, 1.02]),
    }, path)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["result"]["total_trades"] == 1
    assert data["result"]["trades"][0]["exit_reason"] == "TP"
    assert data["count"] == 3
    assert data["regimes"] == ["BULL", "RANGE"]
    assert data["curve"] == [1.0, 1.02]


def test_dataframe_csv(tmp_path):
    path = tmp_path / "out" / "table.csv"
    write_dataframe_csv(pd.DataFrame({"a": [1, 2], "b": ["x", "y"]}), path)
    back = pd.read_csv(path)
    assert back["a"].tolist() == [1, 2]
    assert back["b"].tolist() == ["x", "y"]
