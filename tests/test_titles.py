from services.titles import DEFAULT_TITLE, fallback_title, generate_auto_title, is_generic_title


def test_meaningful_title_is_kept():
    result = generate_auto_title("# Body", "  Persist theme preference  ")
    assert result.title == "Persist theme preference"
    assert result.is_generated is False


def test_generic_or_short_titles_are_replaced():
    assert is_generic_title("New issue about login")
    assert generate_auto_title("Fix login redirect. More text.", "Bug report").title == "Fix login redirect"
    assert generate_auto_title("Fix login redirect", "Fix").is_generated is True


def test_fallback_strips_title_prefixes_and_symbols():
    assert fallback_title("# Title: Add **dark** mode!\n\nDetails") == "Add dark mode"
    assert fallback_title("Title: Cache PR statuses") == "Cache PR statuses"


def test_fallback_truncates_long_first_sentence():
    content = "Implement a resilient background queue for publishing generated issues to GitHub"
    title = fallback_title(content)
    assert len(title) == 50
    assert title.endswith("...")


def test_fallback_default_for_empty_content():
    assert fallback_title("") == DEFAULT_TITLE
    assert fallback_title("***") == DEFAULT_TITLE
