def test_readme_exists_and_has_quick_start():
    import os
    p = os.path.join(os.path.dirname(__file__), "..", "README.md")
    p = os.path.normpath(p)
    assert os.path.exists(p), f"README missing: {p}"
    with open(p, "r", encoding="utf-8") as f:
        text = f.read()
    assert "Quick Start" in text
    assert "manual [on|off]" in text
