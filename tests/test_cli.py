import pytest

import salvage_cli


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_render_file_with_data(tmp_path, capsys):
    template = write(tmp_path, "page.tmpl", "Hello {{.name}}!")
    data = write(tmp_path, "data.yaml", "name: world\n")
    with pytest.raises(SystemExit) as exc:
        salvage_cli.main([template, "-d", data])
    assert exc.value.code == 0
    assert capsys.readouterr().out == "Hello world!"


def test_render_file_with_config(tmp_path, capsys):
    template = write(tmp_path, "page.tmpl", "{{.name}} {{.age}}")
    data = write(tmp_path, "data.yaml", "name: Bob\n")
    config = write(tmp_path, "config.yaml", "managers:\n  m:\n    - members: [age]\n      replace: unknown\n")
    with pytest.raises(SystemExit) as exc:
        salvage_cli.main([template, "-d", data, "-c", config])
    assert exc.value.code == 0
    assert capsys.readouterr().out == "Bob unknown"


def test_render_file_with_all_options(tmp_path, capsys):
    template = write(tmp_path, "page.tmpl", "{{range $i := 5}}{{if eq $i 3}}{{break}}{{end}}{{$i}}{{end}}")
    with pytest.raises(SystemExit) as exc:
        salvage_cli.main([template, "--all-options"])
    assert exc.value.code == 0
    assert capsys.readouterr().out == "012"


def test_execution_error_shows_caret(tmp_path, capsys):
    template = write(tmp_path, "page.tmpl", "{{.a.b}}")
    data = write(tmp_path, "data.yaml", "a: null\n")
    with pytest.raises(SystemExit) as exc:
        salvage_cli.main([template, "-d", data])
    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert "nil pointer evaluating NoneType.b" in err
    assert err.rstrip().endswith("^")


def test_parse_error_exit_status(tmp_path, capsys):
    template = write(tmp_path, "page.tmpl", "{{.a")
    with pytest.raises(SystemExit) as exc:
        salvage_cli.main([template])
    assert exc.value.code == 1
    assert "unclosed action" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        salvage_cli.main([str(tmp_path / "nope.tmpl")])
    assert exc.value.code == 1
    assert "file not found" in capsys.readouterr().err


def test_bad_config(tmp_path, capsys):
    template = write(tmp_path, "page.tmpl", "x")
    config = write(tmp_path, "config.yaml", "options: [teleport]\n")
    with pytest.raises(SystemExit) as exc:
        salvage_cli.main([template, "-c", config])
    assert exc.value.code == 1
    assert "unknown Option value" in capsys.readouterr().err


def test_repl(monkeypatch, capsys):
    lines = iter(["{{1}} {{2}}", "", "{{foo}}", "exit"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))
    salvage_cli.main([])
    captured = capsys.readouterr()
    assert "1 2" in captured.out
    assert 'function "foo" not defined' in captured.err


def test_repl_eof(monkeypatch, capsys):
    def eof(prompt=""):
        raise EOFError
    monkeypatch.setattr("builtins.input", eof)
    salvage_cli.main([])
    assert "salvage REPL" in capsys.readouterr().out
