import csv
import functools
from pathlib import Path

import pytest

import simple_evtx.cli as cli
import simple_evtx.streams as streams
from simple_evtx.cli import main
from simple_evtx.processor import run

from conftest import FakeDecoder, FakeLog, ReplayRawReader, make_record


@pytest.fixture
def fake_run(monkeypatch: pytest.MonkeyPatch, decoder: FakeDecoder) -> FakeDecoder:
    monkeypatch.setattr(cli, "run", functools.partial(run, decoder_factory=decoder))
    return decoder


def test_cli_help_exits_zero() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--help"])
    assert excinfo.value.code == 0


def test_cli_version_exits_zero() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])
    assert excinfo.value.code == 0


def test_cli_requires_a_source(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--csv", str(tmp_path)])
    assert excinfo.value.code == 2


def test_cli_rejects_file_and_directory_together(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["-f", "a.evtx", "-d", str(tmp_path), "--csv", str(tmp_path)])
    assert excinfo.value.code == 2


def test_cli_rejects_bad_time_boundary(tmp_path: Path, fake_run: FakeDecoder) -> None:
    source = fake_run.add(tmp_path, "a.evtx", FakeLog([make_record(1, 1)]))
    code = main(["-f", str(source), "--csv", str(tmp_path), "--from", "2024-03-01"])
    assert code == 1
    assert fake_run.streams == []


def test_cli_missing_input_file(tmp_path: Path, fake_run: FakeDecoder) -> None:
    assert main(["-f", str(tmp_path / "gone.evtx"), "--csv", str(tmp_path)]) == 1


def test_cli_exports_directory_to_named_csv(
    tmp_path: Path, fake_run: FakeDecoder, capsys: pytest.CaptureFixture[str]
) -> None:
    logs = tmp_path / "logs"
    logs.mkdir()
    fake_run.add(logs, "Security.evtx", FakeLog([make_record(1, 4624), make_record(2, 4625)]))
    out_dir = tmp_path / "out"

    code = main(
        ["-d", str(logs), "--csv", str(out_dir), "--csvf", "events.csv", "--inc", "4624"]
    )

    assert code == 0
    with (out_dir / "events.csv").open(newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0][0] == "TimeCreated"
    assert [row[1] for row in rows[1:]] == ["4624"]

    output = capsys.readouterr().out
    assert "Processed 1 file in" in output
    assert "4624" in output
    assert "4625\t" not in output


def test_cli_default_output_name_is_timestamped(tmp_path: Path, fake_run: FakeDecoder) -> None:
    source = fake_run.add(tmp_path, "a.evtx", FakeLog([make_record(1, 1)]))
    out_dir = tmp_path / "out"

    assert main(["-f", str(source), "--csv", str(out_dir), "-q"]) == 0

    created = list(out_dir.glob("*-simple-evtx.csv"))
    assert len(created) == 1
    assert len(created[0].name) == len("20240301080509-simple-evtx.csv")


def test_cli_reports_record_errors_but_exits_zero(
    tmp_path: Path, fake_run: FakeDecoder, capsys: pytest.CaptureFixture[str]
) -> None:
    source = fake_run.add(
        tmp_path, "a.evtx", FakeLog([make_record(1, 1), make_record(2, 1, payload="<oops")])
    )

    assert main(["-f", str(source), "--csv", str(tmp_path / "out")]) == 0

    output = capsys.readouterr().out
    assert "Record #2: Error:" in output
    assert "Files with errors" in output


def test_cli_unwritable_destination_exits_one(tmp_path: Path, fake_run: FakeDecoder) -> None:
    source = fake_run.add(tmp_path, "a.evtx", FakeLog([make_record(1, 1)]))
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")

    assert main(["-f", str(source), "--csv", str(blocker / "out")]) == 1


def lock(monkeypatch: pytest.MonkeyPatch, locked: Path) -> None:
    real_open_shared = streams.open_shared

    def fake_open_shared(path: Path) -> streams.StreamAcquisition:
        if path == locked:
            return streams.StreamAcquisition(
                streams.StreamStatus.LOCKED, path, error_message="sharing violation"
            )
        return real_open_shared(path)

    monkeypatch.setattr(streams, "open_shared", fake_open_shared)


def test_cli_locked_file_without_reader_blames_missing_reader(
    tmp_path: Path,
    fake_run: FakeDecoder,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    source = fake_run.add(tmp_path, "Security.evtx", FakeLog([make_record(1, 1)]))
    lock(monkeypatch, source)
    monkeypatch.setattr(streams, "is_elevated", lambda: True)

    assert main(["-f", str(source), "--csv", str(tmp_path / "out")]) == 1
    assert "no raw volume reader is configured" in caplog.text
    assert "Administrator privileges not found" not in caplog.text


def test_cli_reads_locked_file_through_given_reader(
    tmp_path: Path,
    fake_run: FakeDecoder,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    source = fake_run.add(tmp_path, "Security.evtx", FakeLog([make_record(1, 1), make_record(2, 1)]))
    lock(monkeypatch, source)
    reader = ReplayRawReader()
    out_dir = tmp_path / "out"

    code = main(["-f", str(source), "--csv", str(out_dir), "--csvf", "e.csv"], raw_reader=reader)

    assert code == 0
    assert reader.opened == [source]
    with (out_dir / "e.csv").open(newline="", encoding="utf-8") as f:
        assert len(list(csv.reader(f))) == 3
    assert "Read through raw volume access" in capsys.readouterr().out


def test_cli_loads_raw_reader_by_name(
    tmp_path: Path, fake_run: FakeDecoder, monkeypatch: pytest.MonkeyPatch
) -> None:
    source = fake_run.add(tmp_path, "Security.evtx", FakeLog([make_record(1, 1)]))
    lock(monkeypatch, source)

    code = main(
        ["-f", str(source), "--csv", str(tmp_path / "out"), "--raw-reader", "conftest:ReplayRawReader"]
    )
    assert code == 0


def test_cli_rejects_unknown_raw_reader(tmp_path: Path, fake_run: FakeDecoder) -> None:
    source = fake_run.add(tmp_path, "a.evtx", FakeLog([make_record(1, 1)]))
    code = main(["-f", str(source), "--csv", str(tmp_path), "--raw-reader", "nowhere:Reader"])
    assert code == 1
    assert fake_run.streams == []


def test_cli_rejects_bad_timestamp_pattern(tmp_path: Path, fake_run: FakeDecoder) -> None:
    source = fake_run.add(tmp_path, "a.evtx", FakeLog([make_record(1, 1)]))
    code = main(["-f", str(source), "--csv", str(tmp_path / "out"), "--dt", "ss.ffffffff"])
    assert code == 1
    assert not (tmp_path / "out").exists()
