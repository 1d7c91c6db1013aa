from matrixrun.util.paths import copy_template, ensure_dir, safe_filename


def test_safe_filename():
    assert safe_filename("foo") == "foo"
    assert safe_filename("foo bar") == "foo_bar"
    assert safe_filename("foo/bar") == "foo_bar"
    assert safe_filename("../../etc/passwd") == "etc_passwd"
    assert safe_filename("cargo fmt --check") == "cargo_fmt_--check"
    assert safe_filename("") == "item"
    assert safe_filename("", default="default") == "default"


def test_ensure_dir(tmp_path):
    d = tmp_path / "subdir" / "nested"
    assert not d.exists()
    ensure_dir(d)
    assert d.is_dir()


def test_copy_template(tmp_path):
    dest = tmp_path / ".matrixrun" / "pipeline.yaml"

    assert copy_template("pipeline.yaml", dest) is True
    original = dest.read_text(encoding="utf-8")
    assert "matrix:" in original

    # no overwrite by default
    dest.write_text("Modified", encoding="utf-8")
    assert copy_template("pipeline.yaml", dest) is False
    assert dest.read_text(encoding="utf-8") == "Modified"

    assert copy_template("pipeline.yaml", dest, overwrite=True) is True
    assert dest.read_text(encoding="utf-8") == original
