from datetime import datetime

from conftest import units_from
from rcpt_core.ledger import (
    FailureLedger,
    LedgerEntry,
    aggregate_blocked_keys,
    ledger_files,
    parse_ledger_text,
    write_blocked_keys,
)


def test_entry_render():
    e = LedgerEntry(12345, "Type does not\nallow it", ("a\tb", "c\td"))
    assert e.render() == "# Receipt 12345 — Type does not allow it\na\tb\nc\td\n\n"


def test_ledger_appends_to_file(tmp_path):
    ledger = FailureLedger.for_run(tmp_path, now=datetime(2024, 5, 6, 7, 8, 9))
    assert ledger.path.name == "blackList_20240506_070809"
    u1, u2 = units_from([(10, 1, "A"), (20, 2, "B")])
    ledger.record(u1, "blocked one")
    ledger.record(u2, "blocked two")
    text = ledger.path.read_text(encoding="utf-8")
    assert text.count("# Receipt") == 2
    assert ledger.receipts == [10, 20]
    assert parse_ledger_text(text) == {10, 20}


def test_in_memory_ledger_writes_nothing(tmp_path):
    ledger = FailureLedger()
    ledger.record(units_from([(10, 1, "A")])[0], "x")
    assert len(ledger) == 1
    assert list(tmp_path.iterdir()) == []


def test_parse_mixed_formats():
    text = "\n".join([
        "# Receipt 111 — reason",
        "1\t2\t3\t4\t222\t6",
        "# 333",
        "44444 Receipt type does not allow",
        "123 too short for a legacy key",
        "random words",
    ])
    assert parse_ledger_text(text) == {111, 222, 333, 44444}


def test_aggregate_and_write(tmp_path):
    (tmp_path / "blackList").write_text("55555 legacy reason\n", encoding="utf-8")
    (tmp_path / "blackList_20240101_000000").write_text("# Receipt 3 — x\n# Receipt 55555 — y\n", encoding="utf-8")
    (tmp_path / "other.txt").write_text("# Receipt 9 — z\n", encoding="utf-8")
    files = ledger_files(tmp_path, ["blackList", "blackList_*"])
    assert [p.name for p in files] == ["blackList", "blackList_20240101_000000"]
    keys = aggregate_blocked_keys(files)
    assert keys == [3, 55555]
    out = write_blocked_keys(keys, tmp_path / "out" / "allBlacklistedReceipts.txt")
    assert out.read_text(encoding="utf-8") == "3\n55555\n"
