import json
from pathlib import Path

from tabgrouper.cli import main

SNAPSHOT = {
    "tabs": [
        {"id": 1, "windowId": 1, "url": "https://a.io", "title": "A — Login"},
        {"id": 2, "windowId": 1, "url": "https://a.io/page2", "title": "Page 2"},
        {"id": 3, "windowId": 1, "url": "https://b.io", "title": "B"},
        {"id": 4, "windowId": 1, "url": "https://github.com/acme", "groupId": 9},
    ],
    "groups": [{"id": 9, "windowId": 1, "title": "📌 Mine"}],
    "settings": {"manualGroupIds": [9]},
}


def _write(tmp_path: Path, data) -> Path:
    p = tmp_path / "snapshot.json"
    p.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    return p


def test_plan_prints_operations_as_json(tmp_path: Path, capsys):
    snap = _write(tmp_path, SNAPSHOT)
    rc = main(["plan", "--snapshot", str(snap), "--json", "--no-color"])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out == [
        {"window_id": 1, "op": "CreateGroup", "name": "A", "tab_ids": [1, 2], "color": "blue", "group_id": 10}
    ]


def test_classify_text_output(tmp_path: Path, capsys):
    snap = _write(tmp_path, SNAPSHOT)
    rc = main(["classify", "--snapshot", str(snap), "--no-color"])
    assert rc == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines[0].split("\t")[:3] == ["1", "A", "domain"]
    assert lines[2].split("\t")[:3] == ["3", "B", "domain"]


def test_classify_persists_cache(tmp_path: Path, capsys):
    snap = _write(tmp_path, SNAPSHOT)
    db = tmp_path / "names.sqlite"
    assert main(["classify", "--snapshot", str(snap), "--cache-db", str(db), "--json", "--no-color"]) == 0
    capsys.readouterr()
    assert main(["classify", "--snapshot", str(snap), "--cache-db", str(db), "--json", "--no-color"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert {r["source"] for r in rows} == {"cache"}


def test_bad_snapshot_returns_2(tmp_path: Path):
    assert main(["plan", "--snapshot", str(tmp_path / "missing.json"), "--no-color"]) == 2
    assert main(["plan", "--snapshot", str(_write(tmp_path, ["not", "a", "mapping"])), "--no-color"]) == 2


def test_classify_json_includes_cleaned_title(tmp_path: Path, capsys):
    snap = _write(
        tmp_path,
        {
            "tabs": [
                {"id": 1, "windowId": 1, "url": "https://github.com/pulls", "title": "Pull requests - GitHub"},
                {"id": 2, "windowId": 1, "url": "https://grafana.io", "title": "Dashboard – Grafana"},
            ]
        },
    )
    assert main(["classify", "--snapshot", str(snap), "--json", "--no-color"]) == 0
    rows = {r["tab_id"]: r for r in json.loads(capsys.readouterr().out)}
    assert rows[1]["title"] == "Pull requests"
    assert rows[2]["title"] == "Grafana"
