import pytest

from matrixrun.config import load_pipeline_file, parse_pipeline
from matrixrun.errors import ConfigurationError


def test_load_rust_ci(rust_ci_file):
    spec = load_pipeline_file(rust_ci_file)

    assert spec.name == "CI"
    assert spec.env == {"CARGO_TERM_COLOR": "always"}
    assert [a.name for a in spec.axes] == ["target"]
    assert spec.axes[0].values == ("wasm32-unknown-unknown", "x86_64-unknown-linux-gnu")
    assert [s.name for s in spec.steps] == [
        "install-toolchain",
        "check-format",
        "check-lints",
        "run-tests",
    ]
    assert [s.index for s in spec.steps] == [1, 2, 3, 4]

    install = spec.steps[0]
    assert install.kind == "toolchain"
    assert install.toolchain.components == ("clippy", "rustfmt")
    assert install.toolchain.target == "${{ matrix.target }}"
    assert spec.steps[1].kind == "command"
    assert spec.steps[1].command == "cargo fmt --check"

    # defaults
    assert spec.strategy.fail_fast is False
    assert spec.strategy.max_parallel is None
    assert spec.checkout.strategy == "inplace"


def test_scalar_values_are_strings():
    spec = parse_pipeline(
        {
            "env": {"DEBUG": True, "LEVEL": 2},
            "matrix": {"nightly": [True, False], "version": [1, 1.5]},
            "steps": [{"run": "true"}],
        }
    )
    assert spec.env == {"DEBUG": "true", "LEVEL": "2"}
    assert spec.axes[0].values == ("true", "false")
    assert spec.axes[1].values == ("1", "1.5")


def test_components_as_list():
    spec = parse_pipeline(
        {
            "matrix": {"t": ["a"]},
            "steps": [{"toolchain": {"components": ["clippy", " rustfmt "]}}],
        }
    )
    assert spec.steps[0].toolchain.components == ("clippy", "rustfmt")
    assert spec.steps[0].name == "toolchain rustup"


def test_step_must_declare_exactly_one_command():
    with pytest.raises(ConfigurationError, match="exactly one"):
        parse_pipeline({"matrix": {"t": ["a"]}, "steps": [{"name": "x"}]})
    with pytest.raises(ConfigurationError, match="exactly one"):
        parse_pipeline(
            {"matrix": {"t": ["a"]}, "steps": [{"run": "true", "toolchain": {"installer": "rustup"}}]}
        )


def test_command_installer_requires_command():
    with pytest.raises(ConfigurationError, match="requires a `command`"):
        parse_pipeline(
            {"matrix": {"t": ["a"]}, "steps": [{"toolchain": {"installer": "command"}}]}
        )


@pytest.mark.parametrize(
    "data",
    [
        {"steps": [{"run": "true"}]},
        {"matrix": {"t": ["a"]}},
        {"matrix": {"t": ["a"]}, "steps": []},
        {"matrix": {"t": "a"}, "steps": [{"run": "true"}]},
        {"matrix": {"t": ["a"]}, "steps": [{"toolchain": {"installer": "apt"}}]},
        {"matrix": {"t": ["a"]}, "steps": [{"run": "true"}], "checkout": {"strategy": "clone"}},
        {"matrix": {"t": ["a"]}, "steps": [{"run": "true"}], "strategy": {"max_parallel": 0}},
    ],
)
def test_schema_violations(data):
    with pytest.raises(ConfigurationError, match="Invalid pipeline file"):
        parse_pipeline(data)


def test_bad_yaml(tmp_path):
    p = tmp_path / "pipeline.yaml"
    p.write_text("matrix: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_pipeline_file(p)


def test_non_mapping_yaml(tmp_path):
    p = tmp_path / "pipeline.yaml"
    p.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="must contain a mapping"):
        load_pipeline_file(p)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Cannot read"):
        load_pipeline_file(tmp_path / "nope.yaml")
