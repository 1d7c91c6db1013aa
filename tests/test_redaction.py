from matrixrun.util.redaction import Redactor


def test_redacts_token_shapes():
    r = Redactor()
    text = "push with ghp_" + "a" * 30 + " and sk-" + "B" * 24
    out = r.redact(text)
    assert "ghp_" not in out
    assert "sk-" not in out
    assert out.count("[REDACTED]") == 2


def test_redacts_secret_env_values():
    env = {
        "CARGO_REGISTRY_TOKEN": "s3cr3t-value",
        "API_KEY": "short",
        "MATRIX_TARGET": "wasm32-unknown-unknown",
    }
    r = Redactor.for_env(env)
    out = r.redact("token=s3cr3t-value target=wasm32-unknown-unknown key=short")

    assert "s3cr3t-value" not in out
    # short values and non-secret names are left alone
    assert "key=short" in out
    assert "wasm32-unknown-unknown" in out


def test_no_match_returns_original():
    assert Redactor().redact("error[E0425]: cannot find value") == "error[E0425]: cannot find value"
