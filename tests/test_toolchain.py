"""Tests for the subprocess command runner."""

import pytest

from gateci.toolchain import OUTPUT_LIMIT, CommandTimeout, run_command


def test_shell_command_success(tmp_path):
    result = run_command("echo hello && pwd", cwd=tmp_path)
    assert result.ok
    assert "hello" in result.output
    assert tmp_path.name in result.output


def test_exit_code_and_stderr():
    result = run_command("echo oops >&2; exit 3")
    assert result.exit_code == 3
    assert not result.ok
    assert "oops" in result.output


def test_env_is_layered():
    result = run_command("echo $GATECI_TEST_VAR", env={"GATECI_TEST_VAR": "layered"})
    assert result.output.strip() == "layered"


def test_argv_command():
    assert run_command(["sh", "-c", "exit 0"]).ok


def test_missing_executable():
    with pytest.raises(FileNotFoundError):
        run_command(["definitely-not-a-real-tool-xyz"])


def test_timeout():
    with pytest.raises(CommandTimeout) as exc:
        run_command("sleep 5", timeout=0.2)
    assert exc.value.timeout == 0.2


def test_output_is_truncated_to_tail():
    result = run_command(f"yes a | head -c {OUTPUT_LIMIT * 2}; echo END")
    assert result.output.endswith("END\n")
    assert len(result.output) <= OUTPUT_LIMIT


def test_undecodable_output_is_kept():
    result = run_command("printf '\\377\\376ok'; exit 0")
    assert result.ok
    assert result.output.endswith("ok")
    assert "\ufffd" in result.output
