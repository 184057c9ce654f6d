import pytest

from auto_task.config import DEFAULT_MODEL, AppConfig, apply_overrides, load_config


def test_load_config_from_yaml(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    path = tmp_path / "config.yml"
    path.write_text(
        "\n".join([
            "openai:",
            "  api_key: file-key",
            "  base_url: http://localhost:8080/v1",
            "  model: local-model",
            "agent:",
            f"  workdir: {tmp_path}",
            "  max_steps: 4",
            "  max_output_lines: 0",
            "  output_log: output.log",
            "  env:",
            "    LANG: C",
            "safety:",
            "  denylist_regex:",
            "    - 'rm -rf'",
        ]),
        encoding="utf-8",
    )

    cfg = load_config(str(path))

    assert cfg.api_key == "file-key"
    assert cfg.base_url == "http://localhost:8080/v1"
    assert cfg.model == "local-model"
    assert cfg.workdir == str(tmp_path)
    assert cfg.max_steps == 4
    assert cfg.max_output_lines == 0
    assert cfg.output_log == "output.log"
    assert cfg.env == {"LANG": "C"}
    assert cfg.denylist_regex == ["rm -rf"]


def test_defaults_and_env_key(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")

    cfg = load_config(None)

    assert cfg.api_key == "env-key"
    assert cfg.model == DEFAULT_MODEL
    assert cfg.max_steps == 10
    assert cfg.max_retries == 3
    assert cfg.max_output_lines == 5
    assert cfg.compress_for_llm is True
    assert cfg.confine_to_root is True
    assert cfg.timeout_seconds is None


def test_missing_api_key() -> None:
    with pytest.raises(ValueError, match="API key"):
        AppConfig(api_key=None).require_api_key()


@pytest.mark.parametrize("value", ["0", "-1", "many"])
def test_invalid_max_steps(tmp_path, value: str) -> None:
    path = tmp_path / "config.yml"
    path.write_text(f"agent:\n  max_steps: {value}\n", encoding="utf-8")

    with pytest.raises(ValueError, match="max_steps"):
        load_config(str(path))


def test_apply_overrides_skips_none() -> None:
    cfg = AppConfig(model="a", max_steps=3)

    updated = apply_overrides(cfg, model="b", max_steps=None, workdir=None)

    assert updated.model == "b"
    assert updated.max_steps == 3
    assert cfg.model == "a"
    with pytest.raises(ValueError):
        apply_overrides(cfg, max_steps=0)
