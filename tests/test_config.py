import pytest

from widgetgate.core.config import Settings

SECRET = "s" * 40


def _settings(**values):
    values.setdefault("SECRET_KEY", SECRET)
    return Settings(**values)


def test_testing_environment_is_active():
    config = _settings(ENVIRONMENT="testing")
    assert config.is_testing
    assert not config.is_production


@pytest.mark.parametrize(
    "field, value",
    [
        ("ENVIRONMENT", "qa"),
        ("LOG_LEVEL", "chatty"),
        ("LOG_FORMAT", "xml"),
        ("SECRET_KEY", "too-short"),
        ("WIDGET_KEY_RANDOM_LENGTH", 12),
        ("NOTIFIER_PROVIDER", "carrier-pigeon"),
    ],
)
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValueError):
        _settings(**{field: value})


def test_cors_lists_are_split():
    config = _settings(
        ALLOWED_ORIGINS="https://a.example, https://b.example",
        ALLOWED_METHODS="GET, POST",
    )
    assert config.origins() == ["https://a.example", "https://b.example"]
    assert config.methods() == ["GET", "POST"]

    assert _settings(ALLOWED_ORIGINS=" * ").origins() == ["*"]


def test_widget_urls_are_derived():
    config = _settings(
        WIDGET_BASE_URL="https://widgets.example/",
        PUBLIC_API_URL="https://api.example/",
        API_PREFIX="/api",
    )
    assert config.embed_script_url == "https://widgets.example/widget/v1/embed.js"
    assert config.validate_url == "https://api.example/api/widget-validate"


def test_widget_defaults():
    config = _settings()
    assert config.widget_key_prefix == "wk_live_"
    assert config.widget_key_random_length == 24
    assert config.widget_default_rate_limit == 100
    assert config.widget_rate_window_seconds == 60
