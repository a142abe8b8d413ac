from rollout_orchestrator.templates import render_env_file

BASE = """# OpenWebUI settings
OPENAI_API_KEY=sk-test
WEBUI_URL=http://localhost:8080
SNOWFLAKE_PRIVATE_KEY_PATH=/Users/dev/keys/key.p8

# MCPO
MCPO_SNOWFLAKE_API_KEY=secret
"""


def test_overrides_replace_in_place():
    text = render_env_file(BASE, {
        "WEBUI_URL": "http://34.1.2.3:8080",
        "SNOWFLAKE_PRIVATE_KEY_PATH": "/app/keys/comp_role_key.p8",
    })
    lines = text.splitlines()
    assert lines[2] == "WEBUI_URL=http://34.1.2.3:8080"
    assert lines[3] == "SNOWFLAKE_PRIVATE_KEY_PATH=/app/keys/comp_role_key.p8"
    assert "# OpenWebUI settings" in lines
    assert "MCPO_SNOWFLAKE_API_KEY=secret" in lines


def test_new_keys_are_appended_in_order():
    text = render_env_file(BASE, {"B_KEY": "2", "A_KEY": "1"})
    assert text.endswith("B_KEY=2\nA_KEY=1\n")


def test_header_lines_come_first():
    text = render_env_file("A=1\n", header_lines=["Generated for VM openwebui-mcpo", ""])
    assert text == "# Generated for VM openwebui-mcpo\n#\n\nA=1\n"


def test_values_needing_quotes():
    text = render_env_file("", {"GREETING": "hello world", "EMPTY": "", "HASH": "a#b"})
    assert 'GREETING="hello world"' in text
    assert 'EMPTY=""' in text
    assert 'HASH="a#b"' in text


def test_export_lines_are_overridden():
    text = render_env_file("export WEBUI_URL=old\n", {"WEBUI_URL": "new"})
    assert text == "WEBUI_URL=new\n"


def test_base_untouched_without_overrides():
    assert render_env_file(BASE) == BASE
