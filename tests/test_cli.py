from pathlib import Path

import pytest

from enelog import cli
from enelog.config import SamplerConfig
from enelog.errors import SamplingAborted
from enelog.sources.powercap import PowercapEnergyCounter
from enelog.sources.registry import build_sources
from enelog.types import SourceKind


def _resolve(argv: list[str]) -> SamplerConfig:
    return cli._resolve_config(cli._build_parser().parse_args(argv))


def test_flags_map_to_config() -> None:
    config = _resolve(["-i", "5", "-t", "60", "-d", "-E", "-H", "-D", "-G", "-I"])
    assert config.interval_usec == 5_000_000
    assert config.duration_sec == 60
    assert config.sources == [SourceKind.PACKAGE, SourceKind.DRAM, SourceKind.IPMI, SourceKind.GPU]
    assert config.report_energy and config.headers and config.show_date
    assert config.per_gpu_output


def test_flags_override_config_file(tmp_path: Path) -> None:
    path = tmp_path / "enelog.yaml"
    path.write_text("interval_sec: 2\nduration_sec: 10\nsources: [package, gpu]\n")
    config = _resolve(["--config", str(path), "-t", "30", "-d"])
    assert config.interval_usec == 2_000_000
    assert config.duration_sec == 30
    assert config.sources == [SourceKind.PACKAGE, SourceKind.GPU, SourceKind.DRAM]


def test_invalid_timeout_exits_with_usage_error() -> None:
    with pytest.raises(SystemExit) as info:
        cli.main(["-t", "0"])
    assert info.value.code == 2


def test_main_reports_success(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "run", lambda config, stream: 4)
    assert cli.main(["-t", "4"]) == 0


def test_main_returns_1_on_abort(monkeypatch: pytest.MonkeyPatch) -> None:
    def _abort(config, stream):
        raise SamplingAborted("package: failed to read")

    monkeypatch.setattr(cli, "run", _abort)
    assert cli.main([]) == 1


def test_main_writes_to_output_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def _write(config, stream):
        stream.write("12:00:00 1.000\n")
        return 1

    monkeypatch.setattr(cli, "run", _write)
    out = tmp_path / "logs" / "power.txt"
    assert cli.main(["-o", str(out)]) == 0
    assert out.read_text() == "12:00:00 1.000\n"


def test_build_sources_from_powercap_tree(tmp_path: Path) -> None:
    for zone, name in [("intel-rapl:0", "package-0"), ("intel-rapl:0:0", "core"), ("intel-rapl:0:1", "dram")]:
        (tmp_path / zone).mkdir()
        (tmp_path / zone / "name").write_text(name)
        (tmp_path / zone / "energy_uj").write_text("0")
    config = SamplerConfig(sources=[SourceKind.PACKAGE, SourceKind.DRAM], powercap_root=tmp_path)
    sources, groups = build_sources(config)
    assert [s.source_id for s in sources] == ["package", "dram"]
    assert all(isinstance(s, PowercapEnergyCounter) for s in sources)
    assert sources[0].mandatory and not sources[1].mandatory
    assert sources[1].path == tmp_path / "intel-rapl:0:1" / "energy_uj"
    assert groups == []


def test_build_sources_skips_missing_optional_zone(tmp_path: Path) -> None:
    (tmp_path / "intel-rapl:0").mkdir()
    config = SamplerConfig(sources=[SourceKind.PACKAGE, SourceKind.DRAM], powercap_root=tmp_path)
    sources, _ = build_sources(config)
    assert [s.source_id for s in sources] == ["package"]


def test_malformed_config_file_exits_with_usage_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("sources: {package")
    with pytest.raises(SystemExit) as info:
        cli.main(["--config", str(path)])
    assert info.value.code == 2


def test_main_returns_130_on_interrupt(monkeypatch: pytest.MonkeyPatch) -> None:
    def _interrupt(config, stream):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "run", _interrupt)
    assert cli.main([]) == 130
