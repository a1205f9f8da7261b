"""
Tests for the JSON run report.
"""
import json

from adapters.json_exporter import export_results_json
from core.domain.models import ItemOutcome, ItemStatus, WorkflowResult


def test_report_has_counts_but_never_credentials(tmp_path):
    result = WorkflowResult(
        workflow="gemini-create",
        requested=2,
        items=[
            ItemOutcome(target="p1", status=ItemStatus.SUCCEEDED, record="AIza-secret"),
            ItemOutcome(target="p2", status=ItemStatus.FAILED, error="PERMISSION_DENIED"),
        ],
    )

    path = export_results_json(results=[result], output_path=tmp_path / "reports" / "run.json")

    text = path.read_text(encoding="utf-8")
    assert "AIza-secret" not in text
    payload = json.loads(text)
    run = payload["runs"][0]
    assert run["summary"] == {"succeeded": 1, "failed": 1, "skipped": 0}
    assert [i["target"] for i in run["items"]] == ["p1", "p2"]
    assert "record" not in run["items"][0]
