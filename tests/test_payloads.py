from __future__ import annotations

from avcontrols.payloads import RemoteDevice, load_payloads, load_remote_devices


def test_load_payloads_skips_blank_lines_and_trims(tmp_path) -> None:
    path = tmp_path / "payloads.txt"
    path.write_text("power=AABBCC\n\nguide = DDEEFF\n")

    assert load_payloads(str(path)) == {"power": "AABBCC", "guide": "DDEEFF"}


def test_load_payloads_splits_on_first_equals_and_last_duplicate_wins(tmp_path) -> None:
    path = tmp_path / "payloads.txt"
    path.write_text("select=AA=BB\npower=111\nnot a record\npower=222\n")

    assert load_payloads(str(path)) == {"select": "AA=BB", "power": "222"}


def test_load_payloads_missing_file_is_empty(tmp_path) -> None:
    assert load_payloads(str(tmp_path / "missing.txt")) == {}


def test_load_remote_devices(tmp_path) -> None:
    path = tmp_path / "transmitters.txt"
    path.write_text("Cable Box 1, http://10.0.0.21\n\n Apple TV ,http://10.0.0.22/\n")

    assert load_remote_devices(str(path)) == [
        RemoteDevice("Cable Box 1", "http://10.0.0.21"),
        RemoteDevice("Apple TV", "http://10.0.0.22/"),
    ]


def test_load_remote_devices_missing_file_is_empty(tmp_path) -> None:
    assert load_remote_devices(str(tmp_path / "missing.txt")) == []
