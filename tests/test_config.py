from ticket_dispatcher.config import Settings


def test_github_project_split() -> None:
    assert Settings(github_project="octo/repo").github_owner_repo == ("octo", "repo")
    assert Settings(github_project="").github_owner_repo is None
    assert Settings(github_project="no-slash").github_owner_repo is None


def test_quotes_discarded_unless_shown() -> None:
    assert Settings(show_quoted_text="").discard_quotes
    assert Settings(show_quoted_text="  ").discard_quotes
    assert not Settings(show_quoted_text="true").discard_quotes


def test_any_non_empty_show_quoted_text_keeps_quotes(monkeypatch) -> None:
    monkeypatch.setenv("SHOW_QUOTED_TEXT", "no")

    assert not Settings().discard_quotes

    monkeypatch.setenv("SHOW_QUOTED_TEXT", "keep")

    assert not Settings().discard_quotes


def test_missing_required_settings() -> None:
    settings = Settings(ticket_dispatcher_domain="", whitelist_domain="example.com")

    assert settings.missing_required() == ["TICKET_DISPATCHER_DOMAIN"]
