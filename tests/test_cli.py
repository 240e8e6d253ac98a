"""
Tests for the gfaas command line
"""
import io
import zipfile
from unittest.mock import patch

import pytest

from gfaas.cli import main
from gfaas.errors import BuildError


class TestCli:
    """Test command dispatch and error reporting"""

    def test_package(self, module_file, tmp_path, capsys):
        output = tmp_path / "bundle.zip"

        assert main(["package", str(module_file), "-o", str(output)]) == 0

        with zipfile.ZipFile(io.BytesIO(output.read_bytes())) as zf:
            assert sorted(zf.namelist()) == ["compute.wasm", "manifest.json"]
        assert "entry point compute" in capsys.readouterr().out

    def test_package_default_output(self, module_file):
        assert main(["package", str(module_file)]) == 0
        assert module_file.with_suffix(".zip").is_file()

    def test_package_missing_module(self, tmp_path, capsys):
        assert main(["package", str(tmp_path / "missing.wasm")]) == 1
        err = capsys.readouterr().err
        assert err.startswith("gfaas package: Failed to read module")

    @patch("gfaas.cli.BuildPipeline")
    def test_build(self, mock_pipeline, tmp_path, capsys):
        mock_pipeline.return_value.build.return_value = [tmp_path / "compute.wasm"]

        assert main(["--project-dir", str(tmp_path), "build", "--release", "-p", "sums"]) == 0

        mock_pipeline.assert_called_once_with(tmp_path, release=True)
        mock_pipeline.return_value.build.assert_called_once_with(["-p", "sums"])
        assert "compute.wasm" in capsys.readouterr().out

    @patch("gfaas.cli.BuildPipeline")
    def test_build_failure(self, mock_pipeline, capsys):
        mock_pipeline.return_value.build.side_effect = BuildError("Command failed", "error[E0425]")

        assert main(["build"]) == 1

        err = capsys.readouterr().err
        assert "gfaas build: Command failed" in err
        assert "error[E0425]" in err

    def test_codegen(self, tmp_path, capsys):
        (tmp_path / "shout.rs").write_text("fn shout(data: Vec<u8>) -> Vec<u8> { data }\n")
        (tmp_path / "gfaas.toml").write_text('[functions.shout]\nsource = "shout.rs"\ninputs = ["bytes"]\n')

        assert main(["--project-dir", str(tmp_path), "codegen"]) == 0
        assert (tmp_path / "gfaas_stubs.py").is_file()
        assert (tmp_path / "target" / "debug" / "gfaas_modules" / "src" / "bin" / "shout.rs").is_file()

    def test_missing_command(self):
        with pytest.raises(SystemExit):
            main([])
