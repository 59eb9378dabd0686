from longform.api.settings import DEFAULT_MODELS, PipelineSettings, resolve_llm_base_url


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("LONGFORM_MODELS", "model-a, model-b ,")
    monkeypatch.setenv("LONGFORM_COOLDOWN_SECONDS", "2.5")
    monkeypatch.setenv("LONGFORM_MAX_TRIES", "0")
    monkeypatch.setenv("LONGFORM_DEADLINE_SECONDS", "600")
    monkeypatch.setenv("LONGFORM_LINK_CONTENT", "off")
    monkeypatch.setenv("WORDPRESS_API_URL", " https://blog.example.com ")

    settings = PipelineSettings.from_env()

    assert settings.models == ["model-a", "model-b"]
    assert settings.cooldown_seconds == 2.5
    assert settings.max_tries_per_model == 1
    assert settings.deadline_seconds == 600.0
    assert settings.link_content is False
    assert settings.wordpress_api_url == "https://blog.example.com"


def test_settings_defaults_survive_bad_values(monkeypatch):
    monkeypatch.delenv("LONGFORM_MODELS", raising=False)
    monkeypatch.setenv("LONGFORM_MAX_LINKS", "lots")
    monkeypatch.delenv("LONGFORM_DEADLINE_SECONDS", raising=False)

    settings = PipelineSettings.from_env()

    assert settings.models == list(DEFAULT_MODELS)
    assert settings.max_links == 3
    assert settings.deadline_seconds is None


def test_openai_key_alone_selects_openai_base_url(monkeypatch):
    monkeypatch.delenv("LONGFORM_LLM_BASE_URL", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert resolve_llm_base_url() == "https://api.openai.com/v1"
