from pathlib import Path

from ticket_dispatcher.cli import main, render_file

MESSAGE = (
    b"From: jane@example.com\r\n"
    b"Content-Type: multipart/alternative; boundary=xyz\r\n"
    b"\r\n"
    b"--xyz\r\n"
    b"Content-Type: text/html; charset=utf-8\r\n"
    b"\r\n"
    b"<p>Thanks, <b>fixed</b>.</p><p>On Mon, Bob wrote:</p><p>&gt; old</p>\r\n"
    b"--xyz--\r\n"
)


def _write(tmp_path: Path, data: bytes) -> Path:
    path = tmp_path / "message.eml"
    path.write_bytes(data)
    return path


def test_render_file_keeps_quotes_by_default(tmp_path: Path) -> None:
    rendered = render_file(_write(tmp_path, MESSAGE))

    assert rendered.startswith("Thanks, **fixed**.")
    assert "> old" in rendered


def test_main_discards_quotes(tmp_path: Path, capsys) -> None:
    assert main([str(_write(tmp_path, MESSAGE)), "--quotes", "discard"]) == 0

    out = capsys.readouterr().out
    assert out == "Thanks, **fixed**.\n\n"


def test_main_reports_missing_file(tmp_path: Path, capsys) -> None:
    assert main([str(tmp_path / "missing.eml")]) == 1

    assert "error opening file" in capsys.readouterr().err


def test_main_reports_extraction_failure(tmp_path: Path, capsys) -> None:
    path = _write(tmp_path, b"Content-Type: multipart/mixed\r\n\r\nbody\r\n")

    assert main([str(path)]) == 1

    assert "error extracting body" in capsys.readouterr().err
