"""
Command line end to end: keygen -> encrypt -> evaluate -> decrypt.
"""

import json

import pytest

from fhe_regression.cli import _passphrase, build_parser, main
from fhe_regression.constants import SECRET_KEY_FILE
from fhe_regression.exceptions import FHERegressionError, PassphraseUnavailable
from fhe_regression.model_store import ModelParameters, save_model_parameters

SMALL_PARAMS = [
    "--depth", "2",
    "--scaling-mod-size", "40",
    "--batch-size", "4096",
    "--ring-dim", "8192",
]


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "test.txt").write_text("3\n4\n")
    save_model_parameters(tmp_path / "model_params.raw",
                          ModelParameters.from_sequence([1.0, 2.0], 5.0))
    return tmp_path


def _run_pipeline(ws, secret_args, audit_log=None):
    keys = str(ws / "keys")
    audit = ["--audit-log", str(audit_log)] if audit_log else []

    assert main(["keygen", "--keys", keys, "--features", "2"] + SMALL_PARAMS
                + secret_args + audit) == 0
    assert main(["encrypt", "--keys", keys, "--features-file", str(ws / "test.txt"),
                 "--output", str(ws / "input.bin")] + audit) == 0
    assert main(["evaluate", "--keys", keys, "--input", str(ws / "input.bin"),
                 "--weights", str(ws / "model_params.raw"),
                 "--output", str(ws / "output.bin")] + audit) == 0
    return keys


class TestCommandLine:

    def test_full_pipeline(self, workspace, capsys):
        audit_log = workspace / "audit.jsonl"
        keys = _run_pipeline(workspace, [], audit_log)
        capsys.readouterr()

        assert main(["decrypt", "--keys", keys, "--input", str(workspace / "output.bin")]) == 0

        prediction = float(capsys.readouterr().out.strip())
        assert abs(prediction - 16.0) < 1e-2

        entries = [json.loads(line) for line in audit_log.read_text().splitlines()]
        assert all(e['is_safe'] for e in entries)
        assert {e['entity'] for e in entries} == {'key_owner', 'client', 'evaluator'}

    def test_sealed_secret_key(self, workspace, capsys, monkeypatch):
        monkeypatch.setenv("FHE_PASSPHRASE", "open sesame")
        secret = str(workspace / "owner" / SECRET_KEY_FILE)
        keys = _run_pipeline(workspace, ["--secret-key", secret,
                                         "--passphrase-env", "FHE_PASSPHRASE"])
        capsys.readouterr()

        args = ["decrypt", "--keys", keys, "--secret-key", secret,
                "--input", str(workspace / "output.bin")]
        assert main(args) == 1
        assert "passphrase" in capsys.readouterr().err

        assert main(args + ["--passphrase-env", "FHE_PASSPHRASE"]) == 0
        assert abs(float(capsys.readouterr().out.strip()) - 16.0) < 1e-2

    def test_missing_input_exits_with_error(self, workspace, capsys):
        keys = str(workspace / "keys")
        assert main(["keygen", "--keys", keys, "--features", "2"] + SMALL_PARAMS) == 0

        code = main(["evaluate", "--keys", keys, "--input", str(workspace / "absent.bin"),
                     "--weights", str(workspace / "model_params.raw"),
                     "--output", str(workspace / "output.bin")])

        assert code == 1
        assert "evaluate failed" in capsys.readouterr().err
        assert not (workspace / "output.bin").exists()

    def test_infeasible_parameters(self, workspace, capsys):
        code = main(["keygen", "--keys", str(workspace / "keys"), "--features", "2",
                     "--ring-dim", "3000"])
        assert code == 1
        assert "Unsupported ring dimension" in capsys.readouterr().err

    def test_unset_passphrase_variable(self, workspace, capsys, monkeypatch):
        monkeypatch.delenv("FHE_MISSING", raising=False)
        code = main(["keygen", "--keys", str(workspace / "keys"), "--features", "2",
                     "--passphrase-env", "FHE_MISSING"] + SMALL_PARAMS)
        assert code == 1
        assert "FHE_MISSING" in capsys.readouterr().err

    def test_unset_passphrase_is_a_package_error(self, monkeypatch):
        monkeypatch.delenv("FHE_MISSING", raising=False)
        with pytest.raises(PassphraseUnavailable) as excinfo:
            _passphrase(build_parser().parse_args(
                ["decrypt", "--keys", "keys", "--input", "output.bin",
                 "--passphrase-env", "FHE_MISSING"]))

        assert isinstance(excinfo.value, FHERegressionError)
