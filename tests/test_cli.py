from fakes import FakeProvider, text_response
from vwork import cli


def test_init_creates_config(vwork_home, capsys):
    assert cli._main(["init"]) == 0
    assert (vwork_home / "config.yaml").exists()
    assert "Config created" in capsys.readouterr().out


def test_missing_config_exits_with_error(vwork_home, capsys):
    assert cli._main(["ask", "hello"]) == 1
    assert "vwork init" in capsys.readouterr().err


def test_ask_prints_answer(vwork_home, monkeypatch, capsys):
    cli._main(["init"])
    provider = FakeProvider([text_response("42")])
    monkeypatch.setattr(cli, "LiteLLMProvider", lambda config: provider)

    assert cli._main(["ask", "what is the answer"]) == 0
    assert capsys.readouterr().out.strip().endswith("42")
    assert provider.calls[0]["messages"][0].content == "what is the answer"


def test_report_saves_file(vwork_home, monkeypatch, capsys):
    cli._main(["init"])
    monkeypatch.setattr(cli, "LiteLLMProvider", lambda config: FakeProvider([text_response("# Weekly")]))

    assert cli._main(["report", "--kind", "weekly"]) == 0

    captured = capsys.readouterr()
    assert "# Weekly" in captured.out
    assert "Saved:" in captured.err
    assert list((vwork_home / "reports").glob("*-weekly.md"))
