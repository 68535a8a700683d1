from __future__ import annotations

import json
import os
from unittest import mock

import pytest

from phenomena.__main__ import _apply_overrides, _build_parser, _validator_config, main
from phenomena.config import PhenomenaSettings


class TestOverrides:
    def test_no_flags_keeps_settings(self) -> None:
        settings = PhenomenaSettings(days=90)
        args = _build_parser().parse_args([])
        assert _apply_overrides(settings, args) is settings

    def test_flags_replace_fields(self) -> None:
        args = _build_parser().parse_args(["--days", "50", "--seed", "9", "--symbols", "aaa", "bbb", "-v"])
        settings = _apply_overrides(PhenomenaSettings(), args)
        assert settings.days == 50
        assert settings.seed == 9
        assert settings.symbols == ["AAA", "BBB"]
        assert settings.log_level == "DEBUG"

    def test_validator_config_from_settings(self) -> None:
        settings = PhenomenaSettings(
            days=75,
            symbols=["X"],
            crash_daily_chance=0.05,
            disabled_kinds=["dead_cat_bounce"],
        )
        config = _validator_config(settings)
        assert config.days == 75
        assert config.symbols == ("X",)
        assert config.pattern.crash_daily_chance == 0.05
        assert config.disabled_kinds == ("dead_cat_bounce",)


class TestMain:
    def test_json_report(self, capsys) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            code = main(["--days", "20", "--seed", "4", "--symbols", "aaa", "--json"])
        data = json.loads(capsys.readouterr().out)
        assert data["days"] == 20
        assert data["seed"] == 4
        assert code == (0 if data["ok"] else 1)

    def test_text_report(self, capsys) -> None:
        with mock.patch.dict(os.environ, {"PHENOM_SYMBOLS": "AAA,BBB"}, clear=True):
            code = main(["--days", "10", "--seed", "1"])
        out = capsys.readouterr().out
        assert "Phenomenon Coupling Report" in out
        assert "AAA" in out and "BBB" in out
        # Ten days cannot reach recovery.
        assert code == 1

    def test_parser_rejects_bad_days(self) -> None:
        with pytest.raises(SystemExit) as exc:
            _build_parser().parse_args(["--days", "many"])
        assert exc.value.code == 2
