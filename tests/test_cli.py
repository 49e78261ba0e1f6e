"""Tests for batch ledger CLI: proves CLI dispatches correctly."""

import json
from pathlib import Path

import pytest

from batchledger.cli import build_parser, main


ANCHOR = "0x" + "ab" * 32


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"
        assert args.caller == ""

    def test_create_batch_command(self) -> None:
        args = build_parser().parse_args([
            "--as", "acme", "create-batch",
            "--external-id", "0x01", "--uri", "ipfs://1", "--metadata-hash", "0x02",
        ])
        assert args.command == "create-batch"
        assert args.caller == "acme"
        assert args.external_id == "0x01"

    def test_create_notice_defaults(self) -> None:
        args = build_parser().parse_args([
            "create-notice", "--batch", "1", "--summary", "Leak",
        ])
        assert args.notice_type == "other"
        assert args.severity == "medium"
        assert args.anchor is None

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCLIExecution:
    def _run(self, tmp_path: Path, *argv: str) -> int:
        return main(["--data", str(tmp_path), *argv])

    def test_status_runs(self, tmp_path: Path, capsys) -> None:
        assert self._run(tmp_path, "status") == 0
        status = json.loads(capsys.readouterr().out)
        assert status["roles"]["regulator"] == "regulator"
        assert (tmp_path / "events.jsonl").exists()
        assert (tmp_path / "state.json").exists()

    def test_notice_flow_e2e(self, tmp_path: Path, capsys) -> None:
        assert self._run(tmp_path, "--as", "deployer", "set-supplier", "--account", "acme") == 0
        assert self._run(
            tmp_path, "--as", "acme", "create-batch",
            "--external-id", "0x01", "--uri", "ipfs://meta/1", "--metadata-hash", "0x02",
        ) == 0
        assert self._run(
            tmp_path, "--as", "acme", "create-notice", "--batch", "1",
            "--type", "quality", "--severity", "high",
            "--summary", "Leak detected", "--anchor", ANCHOR,
        ) == 0
        assert self._run(tmp_path, "--as", "acme", "submit-notice", "--id", "1") == 0
        assert self._run(
            tmp_path, "--as", "regulator", "approve-notice", "--id", "1", "--note", "confirmed",
        ) == 0
        capsys.readouterr()

        assert self._run(tmp_path, "verify-root", "--batch", "1", "--root", ANCHOR) == 0
        assert capsys.readouterr().out.strip() == "verified"
        assert self._run(tmp_path, "anchor-verified", "--id", "1") == 0
        capsys.readouterr()

        assert self._run(tmp_path, "show-notice", "--id", "1") == 0
        notice = json.loads(capsys.readouterr().out)
        assert notice["status"] == "approved"
        assert notice["anchor_verified"] is True

    def test_lifecycle_e2e(self, tmp_path: Path, capsys) -> None:
        self._run(
            tmp_path, "--as", "acme", "create-batch",
            "--external-id", "0x01", "--uri", "ipfs://meta/1", "--metadata-hash", "0x02",
        )
        assert self._run(tmp_path, "--as", "operator", "advance", "--batch", "1", "--state", "in_transit") == 0
        assert self._run(tmp_path, "--as", "operator", "recall", "--batch", "1", "--reason", "mould") == 0
        capsys.readouterr()
        assert self._run(tmp_path, "show-batch", "--batch", "1") == 0
        batch = json.loads(capsys.readouterr().out)
        assert batch["state"] == "recalled"

        assert self._run(tmp_path, "events", "--subject", "batch:1") == 0
        lines = capsys.readouterr().out.strip().splitlines()
        kinds = [json.loads(line)["event_kind"] for line in lines]
        assert kinds == [
            "batch_created", "batch_state_changed", "batch_recalled", "batch_state_changed",
        ]

    def test_rejection_exit_code(self, tmp_path: Path, capsys) -> None:
        self._run(
            tmp_path, "--as", "acme", "create-batch",
            "--external-id", "0x01", "--uri", "ipfs://meta/1", "--metadata-hash", "0x02",
        )
        exit_code = self._run(tmp_path, "--as", "acme", "advance", "--batch", "1", "--state", "sold")
        assert exit_code == 1
        assert "Failed: Not operator" in capsys.readouterr().err

    def test_malformed_root(self, tmp_path: Path, capsys) -> None:
        assert self._run(tmp_path, "verify-root", "--batch", "1", "--root", "0xzz") == 1
        assert capsys.readouterr().out.strip() == "mismatch"

    def test_create_batch_without_caller(self, tmp_path: Path, capsys) -> None:
        exit_code = self._run(
            tmp_path, "create-batch",
            "--external-id", "0x01", "--uri", "ipfs://meta/1", "--metadata-hash", "0x02",
        )
        assert exit_code == 1
        assert "Creator cannot be the zero identity" in capsys.readouterr().err
        assert self._run(tmp_path, "show-batch", "--batch", "1") == 1

    def test_create_batch_from_metadata_file(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "meta.json"
        doc.write_text(json.dumps({"lot": 1}), encoding="utf-8")
        assert self._run(
            tmp_path, "--as", "acme", "create-batch",
            "--external-id", "0x01", "--uri", "ipfs://meta/1", "--metadata-file", str(doc),
        ) == 0
        assert self._run(tmp_path, "hash-document", str(doc)) == 0
        out = capsys.readouterr().out.strip().splitlines()
        assert out[-1].startswith("0x")

    def test_compute_root(self, tmp_path: Path, capsys) -> None:
        first = tmp_path / "a.txt"
        second = tmp_path / "b.txt"
        first.write_text("a", encoding="utf-8")
        second.write_text("b", encoding="utf-8")
        assert main(["compute-root", str(first), str(second)]) == 0
        root = capsys.readouterr().out.strip()
        assert root.startswith("0x")
        assert len(root) == 66
