import io

from openapi_snapshot.actions import append_step_summary, emit_annotation, escape_workflow_command, set_output


def test_escape_workflow_command():
    assert escape_workflow_command("a%b\r\nc") == "a%25b%0D%0Ac"
    assert escape_workflow_command(None) == ""


def test_emit_annotation():
    buf = io.StringIO()
    emit_annotation("error", "line one\nline two", title="Snapshot", stream=buf)
    assert buf.getvalue() == "::error title=Snapshot::line one%0Aline two\n"


def test_set_output_single_line(tmp_path):
    path = tmp_path / "out"
    env = {"GITHUB_OUTPUT": str(path)}
    assert set_output("snapshot-url", "https://x", env) is True
    assert set_output("response", '{"ok":true}', env) is True
    assert path.read_text() == 'snapshot-url=https://x\nresponse={"ok":true}\n'


def test_set_output_multi_line_uses_delimiter(tmp_path):
    path = tmp_path / "out"
    set_output("response", "a\nb", {"GITHUB_OUTPUT": str(path)})
    lines = path.read_text().splitlines()
    assert lines[0].startswith("response<<ghadelimiter_")
    delim = lines[0].split("<<", 1)[1]
    assert lines[1:] == ["a", "b", delim]


def test_outside_runner_nothing_is_written():
    assert set_output("response", "x", {}) is False
    assert append_step_summary("## x", {}) is False


def test_append_step_summary(tmp_path):
    path = tmp_path / "summary.md"
    append_step_summary("## a", {"GITHUB_STEP_SUMMARY": str(path)})
    append_step_summary("## b\n", {"GITHUB_STEP_SUMMARY": str(path)})
    assert path.read_text() == "## a\n## b\n"
