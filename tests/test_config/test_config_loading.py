from pathlib import Path

import agent_runtime.config as config_module
from agent_runtime.config import Config, get_config, set_config
from agent_runtime.invocation_context import RunConfig, StreamingMode


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("model:\n  provider: ollama\n  model: llama3.2\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "agent_runtime.yaml"
    local_cfg.write_text(
        (
            "model:\n"
            "  provider: ollama\n"
            "  model: qwen2.5\n"
            "run:\n"
            "  max_llm_calls: 20\n"
            "  streaming_mode: sse\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.model.model == "qwen2.5"
    assert cfg.run.max_llm_calls == 20
    assert cfg.run.streaming_mode == "sse"


def test_load_falls_back_to_default_path_when_no_local(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text(
        (
            "live:\n"
            "  stop_streaming_timeout: 2.5\n"
            "session:\n"
            "  storage: sqlite\n"
        ),
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    cfg = Config.load()

    assert cfg.live.stop_streaming_timeout == 2.5
    assert cfg.session.storage == "sqlite"


def test_missing_config_file_gives_defaults(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    cfg = Config.load()

    assert cfg.model.provider == "ollama"
    assert cfg.run.max_llm_calls == 500
    assert cfg.session.storage == "memory"


def test_env_vars_use_nested_delimiter(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setenv("AGENT_RUNTIME_RUN__MAX_LLM_CALLS", "7")
    monkeypatch.setenv("AGENT_RUNTIME_MODEL__BASE_URL", "http://ollama.internal:11434")

    cfg = Config.load()

    assert cfg.run.max_llm_calls == 7
    assert cfg.model.base_url == "http://ollama.internal:11434"


def test_save_round_trips_through_yaml(tmp_path: Path):
    cfg = Config()
    cfg.run.progressive_sse = True
    cfg.logging.level = "DEBUG"
    path = tmp_path / "nested" / "config.yaml"

    cfg.save(path)
    loaded = Config.from_yaml(path)

    assert loaded.run.progressive_sse is True
    assert loaded.logging.level == "DEBUG"


def test_run_config_defaults_follow_global_config(monkeypatch):
    cfg = Config()
    cfg.run.streaming_mode = "sse"
    cfg.run.max_llm_calls = 3
    cfg.live.stop_streaming_timeout = 0.25
    monkeypatch.setattr(config_module, "_config", None)
    set_config(cfg)

    run_config = RunConfig.from_config()

    assert get_config() is cfg
    assert run_config.streaming_mode is StreamingMode.SSE
    assert run_config.max_llm_calls == 3
    assert run_config.stop_streaming_timeout == 0.25
