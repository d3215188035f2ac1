import pytest

from devsim.lib.constants import DEFAULT_CONFIG_FILE
from devsim.main import main, parse_args


def test_parse_args_defaults() -> None:
    args = parse_args([])
    assert args.file == DEFAULT_CONFIG_FILE
    assert args.log_level == "INFO"
    assert args.log_format == "console"


def test_parse_args_rejects_unknown_format() -> None:
    with pytest.raises(SystemExit):
        parse_args(["--log-format", "xml"])


def test_missing_config_exits_nonzero(tmp_path) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["--file", str(tmp_path / "missing.ini")])
    assert exc.value.code == 1


def test_unknown_interface_exits_nonzero(tmp_path) -> None:
    path = tmp_path / "config.ini"
    path.write_text("[general]\ninterface = devsim-does-not-exist0\n")
    with pytest.raises(SystemExit) as exc:
        main(["--file", str(path), "--log-format", "json"])
    assert exc.value.code == 1
