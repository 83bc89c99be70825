from ticketwatch.config import DEFAULT_SCHEDULE_CRON, load_settings, split_urls
from ticketwatch.core.contracts import PersistencePolicy
from ticketwatch.scheduler import build_trigger


def test_defaults_from_empty_environment() -> None:
    settings = load_settings(environ={})

    assert settings.persist_level == PersistencePolicy.LIGHT
    assert settings.nav_timeout_ms == 90_000
    assert settings.session_base_dir == ".session_data"
    assert settings.headless is False
    assert settings.timezone_id == "America/Los_Angeles"
    assert settings.schedule_cron == DEFAULT_SCHEDULE_CRON
    assert settings.targets == ()
    assert settings.flow_options().has_interactive_goal is False


def test_environment_overrides() -> None:
    settings = load_settings(
        environ={
            "PERSIST_LEVEL": "FULL",
            "NAV_TIMEOUT_MS": "45000",
            "HEADLESS": "true",
            "BRIGHT_DATA_SCRAPING_BROWSER_WEBSOCKET_ENDPOINT": "wss://brd.example:9222",
            "ARTIST_NAME": "Phoebe Bridgers",
            "EVENT_DATE": "2025-11-07",
            "VENUE_CITY": "Los Angeles",
            "FLOW_STEP_TIMEOUT_MS": "abc",
            "STUBHUB_URL": "https://www.stubhub.com/a, https://www.stubhub.com/b",
            "TICKETMASTER_URL": "https://www.ticketmaster.com/e1\nhttps://www.ticketmaster.com/e2;",
        }
    )

    assert settings.persist_level == PersistencePolicy.FULL
    assert settings.nav_timeout_ms == 45_000
    assert settings.flow_step_timeout_ms == 4_500
    session = settings.session_config()
    assert session.headless is True
    assert session.ws_endpoint == "wss://brd.example:9222"
    options = settings.flow_options()
    assert options.target_text_query == "Phoebe Bridgers"
    assert options.venue_constraints() == ("Los Angeles",)
    assert [(t.site, t.url) for t in settings.targets] == [
        ("stubhub", "https://www.stubhub.com/a"),
        ("stubhub", "https://www.stubhub.com/b"),
        ("ticketmaster", "https://www.ticketmaster.com/e1"),
        ("ticketmaster", "https://www.ticketmaster.com/e2"),
    ]


def test_unknown_persist_level_falls_back_to_light() -> None:
    assert load_settings(environ={"PERSIST_LEVEL": "everything"}).persist_level == PersistencePolicy.LIGHT


def test_split_urls() -> None:
    assert split_urls(None) == []
    assert split_urls(" a ;\n b,, c ") == ["a", "b", "c"]


def test_invalid_cron_falls_back_to_default() -> None:
    trigger = build_trigger("every half hour", timezone="UTC")
    default = build_trigger(DEFAULT_SCHEDULE_CRON, timezone="UTC")

    assert str(trigger) == str(default)
